from datetime import datetime
from typing import Optional

from app.models.user import User
from app.billing.timeutils import now_utc, same_utc_month


def is_reset_due(user: User, current_utc: datetime) -> bool:
    last = user.usage_reset_at
    return last is None or not same_utc_month(last, current_utc)


def apply_monthly_reset(user: User, current_utc: Optional[datetime] = None) -> bool:
    """Zero the monthly usage once per calendar month, detected on access.

    Returns True when the user row was changed; the caller commits.
    """
    current_utc = current_utc or now_utc()
    if not is_reset_due(user, current_utc):
        return False

    user.monthly_usage = 0
    user.usage_reset_at = current_utc
    return True
