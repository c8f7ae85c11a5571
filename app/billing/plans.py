from dataclasses import dataclass
from typing import Optional

from app.config import settings

FREE_PLAN = "free"
STARTER_PLAN = "starter"     # 25 scans/month
PRO_PLAN = "pro"             # 100 scans/month
POWER_PLAN = "power"         # 500 scans/month

# Reported plan type when a scan is paid for with a purchased credit
CREDIT_PLAN = "credit"


@dataclass(frozen=True)
class PlanSpec:
    monthly_scans: int


PLANS: dict[str, PlanSpec] = {
    FREE_PLAN: PlanSpec(monthly_scans=1),
    STARTER_PLAN: PlanSpec(monthly_scans=25),
    PRO_PLAN: PlanSpec(monthly_scans=100),
    POWER_PLAN: PlanSpec(monthly_scans=500),
}


def resolve_plan(plan_type: Optional[str]) -> str:
    """Unknown or missing plan types fall back to the free tier."""
    return plan_type if plan_type in PLANS else FREE_PLAN


def plan_limit(plan_type: Optional[str]) -> int:
    return PLANS[resolve_plan(plan_type)].monthly_scans


def subscription_prices() -> dict[str, str]:
    """Stripe price id -> plan type, for the prices that are configured."""
    mapping = {
        settings.stripe_price_starter: STARTER_PLAN,
        settings.stripe_price_pro: PRO_PLAN,
        settings.stripe_price_power: POWER_PLAN,
    }
    return {price: plan for price, plan in mapping.items() if price}


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    return subscription_prices().get(price_id)


def price_for_purchase(purchase: str) -> Optional[str]:
    """Stripe price id for a checkout option ("starter", "pro", "power" or "credit")."""
    prices = {
        STARTER_PLAN: settings.stripe_price_starter,
        PRO_PLAN: settings.stripe_price_pro,
        POWER_PLAN: settings.stripe_price_power,
        CREDIT_PLAN: settings.stripe_price_credit,
    }
    return prices.get(purchase) or None
