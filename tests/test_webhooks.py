"""Stripe webhook: signature gate, credit grants and plan assignment."""
from datetime import datetime, timezone
from unittest.mock import patch

from app.models.billing_event import BillingEvent
from app.models.credit import CreditBalance
from app.models.user import User
from tests.conftest import add_user, signed_webhook

LONG_AGO = datetime(2020, 1, 12, tzinfo=timezone.utc)


def _checkout_event(event_id="evt_1", mode="payment", user_id="user-1", price_id=None, customer="cus_1"):
    metadata = {"user_id": user_id}
    if price_id:
        metadata["price_id"] = price_id
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": f"cs_{event_id}",
            "object": "checkout.session",
            "mode": mode,
            "customer": customer,
            "metadata": metadata,
        }},
    }


def _post(client, event, secret=None):
    payload, signature = signed_webhook(event) if secret is None else signed_webhook(event, secret)
    return client.post(
        "/webhook",
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def _balance(db, user_id="user-1"):
    db.expire_all()
    credit = db.get(CreditBalance, user_id)
    return credit.balance if credit else 0


def test_one_off_payment_grants_one_credit(client, db):
    add_user(db)
    response = _post(client, _checkout_event())
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert _balance(db) == 1


def test_credit_purchases_accumulate(client, db):
    add_user(db, credits=2)
    _post(client, _checkout_event("evt_a"))
    _post(client, _checkout_event("evt_b"))
    assert _balance(db) == 4


def test_duplicate_event_applied_once(client, db):
    add_user(db)
    event = _checkout_event("evt_dup")
    assert _post(client, event).status_code == 200
    assert _post(client, event).status_code == 200
    assert _balance(db) == 1
    assert db.query(BillingEvent).count() == 1


def test_subscription_sets_plan_and_fresh_quota(client, db):
    add_user(db, plan_type="free", monthly_usage=1, usage_reset_at=LONG_AGO)

    _post(client, _checkout_event(mode="subscription", price_id="price_pro"))

    db.expire_all()
    user = db.get(User, "user-1")
    assert user.plan_type == "pro"
    assert user.monthly_usage == 0
    assert (user.usage_reset_at.year, user.usage_reset_at.month) != (2020, 1)
    assert user.stripe_customer_id == "cus_1"
    assert _balance(db) == 0


def test_subscription_price_from_line_items(client, db):
    add_user(db)
    with patch("app.billing.webhooks.stripe_service.checkout_price_id", return_value="price_power") as lookup:
        _post(client, _checkout_event(mode="subscription"))
    lookup.assert_called_once_with("cs_evt_1")
    db.expire_all()
    assert db.get(User, "user-1").plan_type == "power"


def test_unmapped_price_is_left_for_redelivery(client, db):
    add_user(db, plan_type="starter", monthly_usage=7)
    response = _post(client, _checkout_event(mode="subscription", price_id="price_unknown"))
    assert response.status_code == 500
    assert response.json()["error"] == "EVENT_NOT_APPLIED"
    db.expire_all()
    user = db.get(User, "user-1")
    assert (user.plan_type, user.monthly_usage, user.stripe_customer_id) == ("starter", 7, None)
    assert db.query(BillingEvent).count() == 0


def test_payment_before_first_login_creates_user_and_credit(client, db):
    event = _checkout_event("evt_new", user_id="U")
    event["data"]["object"]["customer_details"] = {"email": "buyer@example.com"}

    response = _post(client, event)

    assert response.status_code == 200
    assert _balance(db, "U") == 1
    user = db.get(User, "U")
    assert (user.email, user.plan_type, user.monthly_usage) == ("buyer@example.com", "free", 0)
    assert db.get(BillingEvent, "evt_new") is not None


def test_payment_for_unknown_user_without_email_is_retried(client, db):
    event = _checkout_event("evt_later", user_id="U")

    first = _post(client, event)
    assert first.status_code == 500
    assert _balance(db, "U") == 0
    assert db.query(BillingEvent).count() == 0

    # The buyer signs in, then Stripe delivers the same event again
    add_user(db, "U", "u@example.com")
    assert _post(client, event).status_code == 200
    assert _balance(db, "U") == 1


def test_subscription_for_unknown_user_is_retried(client, db):
    response = _post(client, _checkout_event("evt_sub", mode="subscription", user_id="ghost", price_id="price_pro"))
    assert response.status_code == 500
    assert db.get(User, "ghost") is None
    assert db.query(BillingEvent).count() == 0


def test_subscription_deleted_reverts_to_free(client, db):
    add_user(db, plan_type="power", monthly_usage=40, stripe_customer_id="cus_9")
    event = {
        "id": "evt_del",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_1", "customer": "cus_9", "metadata": {}}},
    }
    assert _post(client, event).status_code == 200
    db.expire_all()
    user = db.get(User, "user-1")
    assert user.plan_type == "free"
    assert user.monthly_usage == 40


def test_unknown_event_type_acknowledged(client, db):
    add_user(db)
    event = {"id": "evt_x", "type": "invoice.paid", "data": {"object": {}}}
    assert _post(client, event).json() == {"received": True}
    assert db.query(BillingEvent).count() == 0


def test_invalid_signature_rejected_without_changes(client, db):
    add_user(db, plan_type="free", monthly_usage=1, credits=0)

    for event in (_checkout_event("evt_bad1"),
                  _checkout_event("evt_bad2", mode="subscription", price_id="price_power")):
        response = _post(client, event, secret="whsec_wrong")
        assert response.status_code == 400
        assert response.json()["error"] == "SIGNATURE_INVALID"

    db.expire_all()
    user = db.get(User, "user-1")
    assert user.plan_type == "free"
    assert _balance(db) == 0
    assert db.query(BillingEvent).count() == 0


def test_missing_signature_header_rejected(client, db):
    add_user(db)
    response = client.post("/webhook", content=b'{"id": "evt"}')
    assert response.status_code == 400
    assert response.json()["error"] == "SIGNATURE_INVALID"
    assert _balance(db) == 0


def test_tampered_body_rejected(client, db):
    add_user(db)
    payload, signature = signed_webhook(_checkout_event())
    tampered = payload.replace(b"user-1", b"user-2")
    response = client.post("/webhook", content=tampered, headers={"Stripe-Signature": signature})
    assert response.status_code == 400
    assert _balance(db) == 0
