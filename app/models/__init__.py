# app/models/__init__.py
from app.database import Base
from .user import User
from .credit import CreditBalance
from .scan import Scan
from .rate_limit import RateLimitWindow
from .billing_event import BillingEvent

__all__ = ['Base', 'User', 'CreditBalance', 'Scan', 'RateLimitWindow', 'BillingEvent']
