import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.models.rate_limit import RateLimitWindow
from app.billing.timeutils import now_utc

logger = logging.getLogger(__name__)


def prune_rate_limit_windows(db: Session, retention_hours: Optional[int] = None) -> int:
    """Delete rate-limit windows nobody will look back at anymore."""
    if retention_hours is None:
        retention_hours = settings.rate_limit_retention_hours
    cutoff = now_utc() - timedelta(hours=retention_hours)
    deleted = (
        db.query(RateLimitWindow)
        .filter(RateLimitWindow.window_start < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def prune_job():
    db: Session = SessionLocal()
    try:
        deleted = prune_rate_limit_windows(db)
        if deleted:
            logger.info("Pruned %s stale rate-limit windows", deleted)
    except Exception:
        logger.exception("Rate-limit pruning failed")
    finally:
        db.close()


def start_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")  # ensure UTC schedule
    # Monthly scan resets are lazy; the only scheduled work is housekeeping
    scheduler.add_job(prune_job, CronTrigger(minute=15, timezone="UTC"))
    scheduler.start()
    return scheduler
