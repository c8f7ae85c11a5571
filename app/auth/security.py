from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from sqlalchemy.orm import Session

from app.billing.timeutils import now_utc
from app.config import settings
from app.database import get_db
from app.errors import EmailNotVerified, Unauthenticated
from app.models.user import User
from app.services.redis_service import redis_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: Optional[str]
    email_verified: bool
    token: str
    expires_at: Optional[datetime] = None


def _email_verified(payload: dict) -> bool:
    if payload.get("email_verified") is True:
        return True
    metadata = payload.get("user_metadata") or {}
    return metadata.get("email_verified") is True


def verify_token(token: str) -> Identity:
    """Validate a bearer token issued by the external auth service"""
    if redis_service.is_token_blacklisted(token):
        raise Unauthenticated("Token has been invalidated")

    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
        )
    except ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except JWTError:
        raise Unauthenticated("Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token payload")

    exp = payload.get("exp")
    return Identity(
        id=str(user_id),
        email=payload.get("email"),
        email_verified=_email_verified(payload),
        token=token,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise Unauthenticated("Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Malformed Authorization header")
    return token.strip()


def get_current_identity(token: str = Depends(bearer_token)) -> Identity:
    return verify_token(token)


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """Load the user behind the token, creating the record on first sight"""
    user = db.get(User, identity.id)
    if user is None:
        if not identity.email:
            raise Unauthenticated("Token carries no email")
        user = User(
            id=identity.id,
            email=identity.email,
            email_verified=identity.email_verified,
            plan_type="free",
            monthly_usage=0,
            usage_reset_at=now_utc(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created user %s on first authentication", user.id)
    elif identity.email_verified and not user.email_verified:
        user.email_verified = True
        db.commit()
    return user


def require_verified_user(
    identity: Identity = Depends(get_current_identity),
    user: User = Depends(get_current_user),
) -> User:
    if not (identity.email_verified or user.email_verified):
        raise EmailNotVerified("Verify your email address before scanning")
    return user
