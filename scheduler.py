import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import AUTO_CLOSE_INTERVAL_SECONDS
from elections import close_expired_elections

logger = logging.getLogger(__name__)

AUTO_CLOSE_JOB_ID = "election_auto_close"


def run_auto_close(db: Database) -> list:
    """One sweep; a datastore failure is logged and the next tick retries."""
    try:
        closed = close_expired_elections(db)
    except PyMongoError:
        logger.exception("Error in election auto-close job")
        return []
    for election_id in closed:
        logger.info("Election %s has been auto-closed by the sweep", election_id)
    return closed


def build_scheduler(db: Database, interval_seconds: Optional[int] = None) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_auto_close,
        trigger=IntervalTrigger(seconds=interval_seconds or AUTO_CLOSE_INTERVAL_SECONDS),
        args=[db],
        id=AUTO_CLOSE_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_scheduler(db: Database) -> BackgroundScheduler:
    scheduler = build_scheduler(db)
    scheduler.start()
    logger.info("Election auto-close job initialized (every %ss)", AUTO_CLOSE_INTERVAL_SECONDS)
    return scheduler
