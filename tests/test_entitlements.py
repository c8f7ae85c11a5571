"""Admission decisions: plan limits, monthly rollover and the credit fallback."""
from datetime import datetime, timezone

import pytest

from app.billing.enforce import (
    SOURCE_CREDIT,
    SOURCE_PLAN,
    ensure_scan_allowed,
    evaluate_entitlement,
)
from app.billing.plans import plan_for_price, plan_limit, price_for_purchase
from app.errors import EntitlementExhausted, ErrorCode
from app.models.user import User
from tests.conftest import add_user

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
EARLIER_THIS_MONTH = datetime(2026, 10, 2, 8, 30, tzinfo=timezone.utc)
LAST_MONTH = datetime(2026, 9, 30, 23, 59, tzinfo=timezone.utc)

LIMITS = {"free": 1, "starter": 25, "pro": 100, "power": 500}


# ── plan table ──────────────────────────────────────────────────────


def test_plan_limits():
    for plan, limit in LIMITS.items():
        assert plan_limit(plan) == limit


@pytest.mark.parametrize("plan", [None, "", "enterprise", "single", "FREE"])
def test_unknown_plan_uses_free_limit(plan):
    assert plan_limit(plan) == 1


def test_price_mapping():
    assert plan_for_price("price_starter") == "starter"
    assert plan_for_price("price_pro") == "pro"
    assert plan_for_price("price_power") == "power"
    assert plan_for_price("price_credit") is None
    assert plan_for_price(None) is None
    assert price_for_purchase("credit") == "price_credit"
    assert price_for_purchase("gold") is None


# ── plan allowance grid ─────────────────────────────────────────────


@pytest.mark.parametrize("plan,limit", LIMITS.items())
@pytest.mark.parametrize("offset", [-1, 0, 1])
def test_allowed_exactly_below_limit(db, plan, limit, offset):
    usage = limit + offset
    add_user(db, plan_type=plan, monthly_usage=usage, usage_reset_at=EARLIER_THIS_MONTH)

    result = evaluate_entitlement(db, "user-1", NOW)

    assert result.allowed is (usage < limit)
    if result.allowed:
        assert result.remaining == limit - usage - 1
        assert result.plan_type == plan
        assert result.source == SOURCE_PLAN
    else:
        assert result.remaining == 0
        assert result.reason == ErrorCode.SCAN_LIMIT_REACHED


def test_unknown_plan_behaves_like_free(db):
    add_user(db, plan_type="legacy-gold", monthly_usage=0, usage_reset_at=EARLIER_THIS_MONTH)
    first = evaluate_entitlement(db, "user-1", NOW)
    assert first.allowed is True
    assert first.remaining == 0
    assert first.plan_type == "free"

    db.get(User, "user-1").monthly_usage = 1
    db.commit()
    assert evaluate_entitlement(db, "user-1", NOW).allowed is False


def test_absent_user_is_free_with_no_usage(db):
    result = evaluate_entitlement(db, "nobody", NOW)
    assert result.allowed is True
    assert result.plan_type == "free"
    assert result.remaining == 0
    assert db.get(User, "nobody") is None


# ── monthly rollover ────────────────────────────────────────────────


def test_rollover_resets_usage_before_limit_check(db):
    add_user(db, plan_type="starter", monthly_usage=25, usage_reset_at=LAST_MONTH)

    result = evaluate_entitlement(db, "user-1", NOW)

    assert result.allowed is True
    assert result.remaining == 24
    db.expire_all()
    user = db.get(User, "user-1")
    assert user.monthly_usage == 0
    assert (user.usage_reset_at.year, user.usage_reset_at.month) == (2026, 10)


def test_rollover_across_year_boundary(db):
    add_user(db, plan_type="free", monthly_usage=1,
             usage_reset_at=datetime(2025, 12, 31, 23, 0, tzinfo=timezone.utc))
    result = evaluate_entitlement(db, "user-1", datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc))
    assert result.allowed is True


def test_same_month_keeps_usage(db):
    add_user(db, plan_type="free", monthly_usage=1, usage_reset_at=EARLIER_THIS_MONTH)
    assert evaluate_entitlement(db, "user-1", NOW).allowed is False
    db.expire_all()
    assert db.get(User, "user-1").monthly_usage == 1


def test_missing_reset_timestamp_counts_as_due(db):
    add_user(db, plan_type="free", monthly_usage=1)
    user = db.get(User, "user-1")
    user.usage_reset_at = None
    db.commit()
    assert evaluate_entitlement(db, "user-1", NOW).allowed is True


# ── credit fallback ─────────────────────────────────────────────────


@pytest.mark.parametrize("balance", [1, 2, 7])
def test_credits_used_after_plan_exhausted(db, balance):
    add_user(db, plan_type="pro", monthly_usage=100, usage_reset_at=EARLIER_THIS_MONTH, credits=balance)

    result = evaluate_entitlement(db, "user-1", NOW)

    assert result.allowed is True
    assert result.remaining == balance - 1
    assert result.plan_type == "credit"
    assert result.source == SOURCE_CREDIT


def test_zero_credits_denied(db):
    add_user(db, plan_type="free", monthly_usage=1, usage_reset_at=EARLIER_THIS_MONTH, credits=0)
    result = evaluate_entitlement(db, "user-1", NOW)
    assert result.allowed is False
    assert result.reason == ErrorCode.SCAN_LIMIT_REACHED


def test_plan_allowance_preferred_over_credits(db):
    add_user(db, plan_type="starter", monthly_usage=3, usage_reset_at=EARLIER_THIS_MONTH, credits=5)
    result = evaluate_entitlement(db, "user-1", NOW)
    assert result.source == SOURCE_PLAN
    assert result.remaining == 21


def test_ensure_scan_allowed_raises_when_exhausted(db):
    add_user(db, plan_type="free", monthly_usage=1)
    with pytest.raises(EntitlementExhausted) as exc_info:
        ensure_scan_allowed(db, "user-1")
    assert exc_info.value.status_code == 403
    assert exc_info.value.payload()["error"] == "SCAN_LIMIT_REACHED"
