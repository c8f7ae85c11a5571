from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from app.database import Base


class BillingEvent(Base):
    """Stripe events already applied, keyed by the provider's event id."""
    __tablename__ = "billing_events"

    event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
