import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.credit import CreditBalance
from app.models.scan import Scan
from app.models.user import User
from app.billing.enforce import Entitlement, SOURCE_CREDIT, SOURCE_PLAN
from app.billing.plans import plan_limit

logger = logging.getLogger(__name__)


def _charge_plan(db: Session, user_id: str) -> bool:
    user = db.get(User, user_id)
    if user is None:
        return False
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.monthly_usage < plan_limit(user.plan_type))
        .values(monthly_usage=User.monthly_usage + 1)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def _charge_credit(db: Session, user_id: str) -> bool:
    result = db.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id, CreditBalance.balance > 0)
        .values(balance=CreditBalance.balance - 1)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def record_scan(
    db: Session,
    user_id: str,
    score: float,
    is_ai: bool,
    ip: Optional[str],
    entitlement: Entitlement,
    image_url: Optional[str] = None,
) -> Scan:
    """Append the scan and charge exactly one unit to the allowance the
    entitlement decision picked.

    The charge is a conditional UPDATE, so counters never pass the plan limit
    or drop below zero even when two requests were admitted on the same
    remaining unit; the second scan is still recorded.
    """
    if entitlement.source not in (SOURCE_PLAN, SOURCE_CREDIT):
        raise ValueError(f"Cannot record a scan for a denied entitlement: {entitlement!r}")

    scan = Scan(
        user_id=user_id,
        score=score,
        is_ai=is_ai,
        ip=ip,
        image_url=image_url,
        charged_to=entitlement.source,
    )
    db.add(scan)

    if entitlement.source == SOURCE_PLAN:
        charged = _charge_plan(db, user_id)
    else:
        charged = _charge_credit(db, user_id)
    if not charged:
        logger.warning("Concurrent scan already used the last %s unit for user %s",
                       entitlement.source, user_id)

    db.commit()
    db.refresh(scan)
    logger.info("Recorded scan %s for user %s (score=%.3f, charged_to=%s)",
                scan.id, user_id, score, entitlement.source)
    return scan
