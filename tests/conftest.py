# tests/conftest.py
import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so the environment must be ready first
os.environ.update({
    "DATABASE_URL": "sqlite://",
    "REDIS_URL": "",
    "AUTH_JWT_SECRET": "test-jwt-secret",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "STRIPE_PRICE_STARTER": "price_starter",
    "STRIPE_PRICE_PRO": "price_pro",
    "STRIPE_PRICE_POWER": "price_power",
    "STRIPE_PRICE_CREDIT": "price_credit",
    "DETECTOR_BACKEND": "stub",
    "CLOUDINARY_CLOUD_NAME": "",
    "CLOUDINARY_API_KEY": "",
})

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models
from app.database import get_db
from app.main import app
from app.models.credit import CreditBalance
from app.models.user import User
from app.services.detection import StubDetector, get_detector

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def detector():
    return StubDetector(score=0.9)


@pytest.fixture
def client(session_factory, detector):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_detector] = lambda: detector
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(
    sub="user-1",
    email="user1@example.com",
    email_verified=True,
    expires_in=timedelta(hours=1),
    secret="test-jwt-secret",
    audience="authenticated",
    **claims,
):
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "email": email,
        "aud": audience,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
        "user_metadata": {"email_verified": email_verified},
        **claims,
    }
    if sub is None:
        payload.pop("sub")
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(**kwargs):
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


def add_user(db, user_id="user-1", email="user1@example.com", plan_type="free",
             monthly_usage=0, usage_reset_at=None, credits=None, verified=True,
             stripe_customer_id=None):
    user = User(
        id=user_id,
        email=email,
        email_verified=verified,
        plan_type=plan_type,
        monthly_usage=monthly_usage,
        usage_reset_at=usage_reset_at or datetime.now(timezone.utc),
        stripe_customer_id=stripe_customer_id,
    )
    db.add(user)
    if credits is not None:
        db.add(CreditBalance(user_id=user_id, balance=credits))
    db.commit()
    return user


def signed_webhook(event: dict, secret=WEBHOOK_SECRET):
    """Body and Stripe-Signature header the way Stripe would send them."""
    payload = json.dumps(event).encode("utf-8")
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256
    ).hexdigest()
    return payload, f"t={timestamp},v1={signature}"
