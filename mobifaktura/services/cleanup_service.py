"""
Daily maintenance jobs, run at CLEANUP_HOUR local time from the app lifespan.

Each job commits on its own; one failing job is logged and the rest
still run.
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from mobifaktura.core.config import settings
from mobifaktura.core.database import SessionLocal
from mobifaktura.logger_config import logger
from mobifaktura.models.invoice import Invoice
from mobifaktura.models.notification import Notification
from mobifaktura.models.user import LoginAttempt, LoginLog, UserSession
from mobifaktura.services.storage_service import ObjectStorage, get_storage
from mobifaktura.utils.dates import utcnow

LOGIN_LOG_RETENTION_DAYS = 30
LOGIN_ATTEMPT_RETENTION_DAYS = 30
NOTIFICATION_RETENTION_DAYS = 2


def clean_old_login_logs(db: Session, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=LOGIN_LOG_RETENTION_DAYS)
    deleted = db.query(LoginLog).filter(LoginLog.created_at < cutoff).delete(synchronize_session=False)
    db.commit()
    return deleted


def clean_old_login_attempts(db: Session, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=LOGIN_ATTEMPT_RETENTION_DAYS)
    deleted = (
        db.query(LoginAttempt)
        .filter(LoginAttempt.updated_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def clean_expired_sessions(db: Session, now: Optional[datetime] = None) -> int:
    deleted = (
        db.query(UserSession)
        .filter(UserSession.expires_at < (now or utcnow()))
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def clean_old_notifications(db: Session, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=NOTIFICATION_RETENTION_DAYS)
    deleted = (
        db.query(Notification)
        .filter(Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def audit_orphaned_files(db: Session, storage: ObjectStorage) -> int:
    """Count stored objects no invoice points at. Read-only; nothing is deleted."""
    referenced = {
        row.image_key for row in db.query(Invoice.image_key).filter(Invoice.image_key.isnot(None)).all()
    }
    orphaned = [key for key in storage.list_keys() if key not in referenced]
    for key in orphaned[:20]:
        logger.warning(f"Orphaned storage object: {key}")
    if len(orphaned) > 20:
        logger.warning(f"... and {len(orphaned) - 20} more orphaned objects")
    return len(orphaned)


def run_daily_cleanup(db: Session, storage: Optional[ObjectStorage] = None) -> Dict[str, Optional[int]]:
    """Run every job. Returns affected rows per job, None for jobs that failed."""
    jobs: Dict[str, Callable[[], int]] = {
        "login_logs": lambda: clean_old_login_logs(db),
        "login_attempts": lambda: clean_old_login_attempts(db),
        "expired_sessions": lambda: clean_expired_sessions(db),
        "notifications": lambda: clean_old_notifications(db),
    }
    if storage is not None:
        jobs["orphaned_files"] = lambda: audit_orphaned_files(db, storage)

    results: Dict[str, Optional[int]] = {}
    for name, job in jobs.items():
        started = time.monotonic()
        try:
            results[name] = job()
            logger.info(f"Cleanup job {name}: {results[name]} rows in {time.monotonic() - started:.2f}s")
        except Exception:
            db.rollback()
            results[name] = None
            logger.exception(f"Cleanup job {name} failed")
    return results


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from ``now`` until the next ``hour``:00 in the same timezone."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def cleanup_scheduler() -> None:
    """Sleep until the next run, clean up, repeat. Cancelled on shutdown."""
    logger.info(f"Cleanup scheduler started, daily at {settings.CLEANUP_HOUR:02d}:00")
    while True:
        delay = seconds_until_next_run(datetime.now(), settings.CLEANUP_HOUR)
        await asyncio.sleep(delay)
        try:
            await asyncio.to_thread(_run_once)
        except Exception:
            logger.exception("Daily cleanup run failed, retrying at the next scheduled time")


def _run_once() -> None:
    db = SessionLocal()
    try:
        run_daily_cleanup(db, get_storage())
    finally:
        db.close()
