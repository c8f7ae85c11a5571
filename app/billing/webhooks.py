"""Apply verified Stripe events to plan and credit state.

Signature verification happens in ``stripe_service.construct_event`` before
anything here runs; this module only ever sees authentic events.
"""
import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.billing.assigns import assign_plan, grant_credit, revert_to_free
from app.billing.plans import FREE_PLAN, plan_for_price
from app.billing.timeutils import now_utc
from app.errors import EventNotApplied
from app.models.billing_event import BillingEvent
from app.models.user import User
from app.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

CREDITS_PER_PURCHASE = 1


def _metadata(obj: Any) -> dict:
    return obj.get("metadata") or {}


def _find_user(db: Session, user_id: Optional[str], customer_id: Optional[str]) -> Optional[User]:
    if user_id:
        user = db.get(User, user_id)
        if user:
            return user
    if customer_id:
        return db.query(User).filter(User.stripe_customer_id == customer_id).first()
    return None


def _checkout_email(session: Any) -> Optional[str]:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


def _create_purchaser(db: Session, user_id: str, session: Any) -> User:
    """Minimal user row for a payment that landed before the buyer's first request."""
    email = _checkout_email(session)
    if not email:
        raise EventNotApplied(f"Checkout {session.get('id')}: no user {user_id} and no email to create one")
    if db.query(User).filter(User.email == email).first() is not None:
        raise EventNotApplied(f"Checkout {session.get('id')}: email of user {user_id} belongs to another user")
    user = User(
        id=user_id,
        email=email,
        plan_type=FREE_PLAN,
        monthly_usage=0,
        usage_reset_at=now_utc(),
    )
    db.add(user)
    db.flush()
    logger.info("Created user %s from checkout %s", user_id, session.get("id"))
    return user


def _handle_checkout_completed(db: Session, session: Any) -> bool:
    metadata = _metadata(session)
    customer_id = session.get("customer")
    mode = session.get("mode")
    user = _find_user(db, metadata.get("user_id"), customer_id)
    if user is None:
        if mode == "payment" and metadata.get("user_id"):
            user = _create_purchaser(db, metadata["user_id"], session)
        else:
            raise EventNotApplied(
                f"Checkout {session.get('id')} completed for unknown user {metadata.get('user_id')}"
            )

    if customer_id and not user.stripe_customer_id:
        user.stripe_customer_id = customer_id

    if mode == "payment":
        grant_credit(db, user.id, CREDITS_PER_PURCHASE)
        return True

    if mode == "subscription":
        price_id = metadata.get("price_id") or stripe_service.checkout_price_id(session.get("id"))
        plan_type = plan_for_price(price_id)
        if plan_type is None:
            raise EventNotApplied(f"Checkout {session.get('id')} has unmapped price {price_id}")
        assign_plan(user, plan_type)
        logger.info("User %s moved to plan %s", user.id, plan_type)
        return True

    logger.warning("Ignoring checkout %s with mode %s", session.get("id"), mode)
    return False


def _handle_subscription_deleted(db: Session, subscription: Any) -> bool:
    user = _find_user(db, _metadata(subscription).get("user_id"), subscription.get("customer"))
    if user is None:
        # Nothing to downgrade
        logger.warning("Subscription %s deleted for unknown customer %s",
                       subscription.get("id"), subscription.get("customer"))
        return False
    revert_to_free(user)
    logger.info("User %s reverted to free plan", user.id)
    return True


HANDLERS = {
    CHECKOUT_COMPLETED: _handle_checkout_completed,
    SUBSCRIPTION_DELETED: _handle_subscription_deleted,
}


def handle_event(db: Session, event: Any) -> bool:
    """Apply one event. Returns False for duplicates and events with nothing to change.

    An event that cannot be applied raises ``EventNotApplied`` without being
    marked processed, so the non-2xx answer makes Stripe deliver it again.
    """
    event_id = event["id"]
    event_type = event["type"]

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring Stripe event %s (%s)", event_id, event_type)
        return False

    if db.get(BillingEvent, event_id) is not None:
        logger.info("Stripe event %s already processed", event_id)
        return False

    try:
        applied = handler(db, event["data"]["object"])
    except EventNotApplied:
        db.rollback()
        raise

    db.add(BillingEvent(event_id=event_id, event_type=event_type))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if db.get(BillingEvent, event_id) is None:
            raise
        # Another delivery of the same event committed first
        logger.info("Stripe event %s processed concurrently", event_id)
        return False
    return applied
