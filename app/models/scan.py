from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Float, Boolean
from sqlalchemy.sql import func
from app.database import Base


class Scan(Base):
    """One completed scan. Rows are only ever inserted."""
    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    score = Column(Float, nullable=False)
    is_ai = Column(Boolean, nullable=False)
    ip = Column(String, nullable=True)
    image_url = Column(String, nullable=True)  # Cloudinary secure_url or the submitted URL
    charged_to = Column(String, nullable=False)  # "plan" or "credit"
    created_at = Column(DateTime(timezone=True), server_default=func.now())
