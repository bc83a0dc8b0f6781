import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import SessionLocal
from modules.contracts.services.cleanup import delete_expired_tokens

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None


def sweep_expired_tokens(session_factory=SessionLocal) -> int:
    with session_factory() as session:
        try:
            return delete_expired_tokens(session)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Expired token sweep failed; retrying on the next run")
            return 0


def start_token_sweep_job(interval_minutes: Optional[int] = None) -> BackgroundScheduler:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    interval = interval_minutes or settings.token_sweep_interval_minutes
    _scheduler = BackgroundScheduler()
    _scheduler.add_job(
        sweep_expired_tokens,
        'interval',
        minutes=interval,
        id='expired-token-sweep',
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("Expired token sweep scheduled every %d minutes", interval)
    return _scheduler


def stop_token_sweep_job():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
