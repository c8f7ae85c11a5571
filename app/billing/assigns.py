import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.billing.timeutils import now_utc
from app.billing.plans import PLANS, FREE_PLAN
from app.models.credit import CreditBalance
from app.models.user import User

logger = logging.getLogger(__name__)


def assign_plan(user: User, plan_type: str, current_utc: Optional[datetime] = None):
    """Switch to a subscription tier with a fresh monthly quota (no prorating)."""
    if plan_type not in PLANS:
        raise ValueError(f"Unknown plan type: {plan_type}")
    now = current_utc or now_utc()
    user.plan_type = plan_type
    user.monthly_usage = 0
    user.usage_reset_at = now


def revert_to_free(user: User):
    # Usage is kept; the user just drops to the free limit for the rest of the month
    user.plan_type = FREE_PLAN


def grant_credit(db: Session, user_id: str, amount: int = 1) -> CreditBalance:
    """Add purchased credits on top of whatever balance the user already has."""
    if amount <= 0:
        raise ValueError("Credit grants must be positive")
    credit = db.get(CreditBalance, user_id)
    if credit is None:
        credit = CreditBalance(user_id=user_id, balance=0)
        db.add(credit)
    credit.balance += amount
    logger.info("Granted %s credit(s) to user %s", amount, user_id)
    return credit
