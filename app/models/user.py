from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base


class User(Base):
    __tablename__ = "users"

    # Identity id issued by the external auth service
    id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)

    plan_type = Column(String, default="free", nullable=False)
    monthly_usage = Column(Integer, default=0, nullable=False)
    usage_reset_at = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(String, unique=True, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
