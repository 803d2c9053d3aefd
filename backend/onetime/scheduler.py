"""Background scheduler for the expired-secret reaper."""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from onetime.config import Settings
from onetime.services.crypto import CryptoEngine
from onetime.services.secret_service import SecretLifecycle
from onetime.services.secret_store import SecretStore

logger = structlog.get_logger()

REAPER_JOB_ID = "purge_expired_secrets"


def purge_job(session_factory: sessionmaker[Session], crypto: CryptoEngine, site_url: str) -> None:
    """Delete expired and exhausted secrets. Never raises."""
    db = session_factory()
    try:
        lifecycle = SecretLifecycle(SecretStore(db), crypto, site_url=site_url)
        lifecycle.purge_expired()
    except Exception as e:
        logger.error("secret_purge_failed", error_type=type(e).__name__, exc_info=True)
    finally:
        db.close()


def build_scheduler(
    settings: Settings, session_factory: sessionmaker[Session], crypto: CryptoEngine
) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        purge_job,
        trigger=IntervalTrigger(minutes=settings.reaper_interval_minutes),
        args=(session_factory, crypto, settings.site_url),
        id=REAPER_JOB_ID,
        replace_existing=True,
    )
    return scheduler


def start_scheduler(scheduler: BackgroundScheduler, interval_minutes: int) -> None:
    scheduler.start()
    logger.info("scheduler_started", interval_minutes=interval_minutes)


def shutdown_scheduler(scheduler: BackgroundScheduler) -> None:
    """Shutdown the scheduler without waiting for a running purge."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
