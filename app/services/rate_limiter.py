"""Per-IP, per-endpoint request caps backed by the ``rate_limits`` table.

Each check looks back ``window_minutes`` from now for the most recent window
of (ip, endpoint). A window is counted until its start falls out of the
lookback, at which point the next request opens a new one. Requests that
straddle two windows can therefore see close to twice the limit.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.billing.timeutils import now_utc
from app.database import get_db
from app.errors import RateLimited
from app.models.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


def check_rate_limit(
    db: Session,
    ip: str,
    endpoint: str,
    max_requests: int,
    window_minutes: int,
    current_utc: Optional[datetime] = None,
) -> bool:
    current_utc = current_utc or now_utc()
    cutoff = current_utc - timedelta(minutes=window_minutes)

    window = (
        db.query(RateLimitWindow)
        .filter(
            RateLimitWindow.ip == ip,
            RateLimitWindow.endpoint == endpoint,
            RateLimitWindow.window_start >= cutoff,
        )
        .order_by(RateLimitWindow.window_start.desc())
        .first()
    )

    if window is None:
        db.add(RateLimitWindow(ip=ip, endpoint=endpoint, count=1, window_start=current_utc))
        db.commit()
        return True

    if window.count >= max_requests:
        return False

    # Increment only while still under the cap, so racing requests cannot overshoot it
    result = db.execute(
        update(RateLimitWindow)
        .where(RateLimitWindow.id == window.id, RateLimitWindow.count < max_requests)
        .values(count=RateLimitWindow.count + 1)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount == 1


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(endpoint: str, max_requests: int, window_minutes: int):
    """FastAPI dependency enforcing a cap on ``endpoint`` per client IP."""
    def dependency(request: Request, db: Session = Depends(get_db)) -> str:
        ip = client_ip(request)
        if not check_rate_limit(db, ip, endpoint, max_requests, window_minutes):
            logger.warning("Rate limit hit: %s on %s", ip, endpoint)
            raise RateLimited(f"Too many requests. Try again in {window_minutes} minute(s).")
        return ip
    return dependency
