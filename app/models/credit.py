from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint
from app.database import Base


class CreditBalance(Base):
    __tablename__ = "credits"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credits_balance_non_negative"),)

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    balance = Column(Integer, default=0, nullable=False)
