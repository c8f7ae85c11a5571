from sqlalchemy import Column, Integer, String, DateTime, Index
from app.database import Base


class RateLimitWindow(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (Index("ix_rate_limits_lookup", "ip", "endpoint", "window_start"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    count = Column(Integer, default=0, nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
