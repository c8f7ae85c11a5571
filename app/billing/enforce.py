# app/billing/enforce.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.errors import EntitlementExhausted, ErrorCode
from app.models.credit import CreditBalance
from app.models.user import User
from app.billing.plans import CREDIT_PLAN, plan_limit, resolve_plan
from app.billing.resets import apply_monthly_reset
from app.billing.timeutils import now_utc

logger = logging.getLogger(__name__)

SOURCE_PLAN = "plan"
SOURCE_CREDIT = "credit"


@dataclass(frozen=True)
class Entitlement:
    """Outcome of one admission decision.

    ``source`` names the allowance the next scan will be charged to and is
    handed to the usage recorder unchanged.
    """
    allowed: bool
    remaining: int
    plan_type: str
    source: Optional[str] = None
    reason: Optional[ErrorCode] = None


def get_credit_balance(db: Session, user_id: str) -> int:
    credit = db.get(CreditBalance, user_id)
    return credit.balance if credit else 0


def evaluate_entitlement(db: Session, user_id: str, current_utc: Optional[datetime] = None) -> Entitlement:
    current_utc = current_utc or now_utc()
    user = db.get(User, user_id)

    if user is None:
        plan_type, usage = resolve_plan(None), 0
    else:
        if apply_monthly_reset(user, current_utc):
            db.commit()
            logger.info("Monthly usage reset for user %s", user_id)
        plan_type, usage = resolve_plan(user.plan_type), user.monthly_usage

    limit = plan_limit(plan_type)
    if usage < limit:
        return Entitlement(
            allowed=True,
            remaining=limit - usage - 1,
            plan_type=plan_type,
            source=SOURCE_PLAN,
        )

    # Plan allowance is spent first; purchased credits are the last resort
    balance = get_credit_balance(db, user_id)
    if balance > 0:
        return Entitlement(
            allowed=True,
            remaining=balance - 1,
            plan_type=CREDIT_PLAN,
            source=SOURCE_CREDIT,
        )

    return Entitlement(
        allowed=False,
        remaining=0,
        plan_type=plan_type,
        reason=ErrorCode.SCAN_LIMIT_REACHED,
    )


def ensure_scan_allowed(db: Session, user_id: str) -> Entitlement:
    entitlement = evaluate_entitlement(db, user_id)
    if not entitlement.allowed:
        logger.info("Scan denied for user %s on plan %s", user_id, entitlement.plan_type)
        raise EntitlementExhausted("Scan limit reached. Upgrade your plan or buy a credit.")
    return entitlement
