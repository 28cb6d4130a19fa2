import logging

from apscheduler.schedulers.background import BackgroundScheduler

from learnhub.config import settings
from learnhub.jobs import emi_access_sweep, enrollment_expiry, side_effect_drain


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def emi_access_sweep_job():
    emi_access_sweep.execute()


def enrollment_expiry_job():
    enrollment_expiry.execute()


def side_effect_drain_job():
    side_effect_drain.execute()


def start_scheduler():
    if not settings.enable_scheduler:
        logger.info('scheduler_disabled')
        return
    scheduler.add_job(
        emi_access_sweep_job,
        'interval',
        minutes=max(1, settings.emi_sweep_interval_minutes),
        id='emi_access_sweep',
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        enrollment_expiry_job,
        'interval',
        minutes=max(1, settings.expiry_sweep_interval_minutes),
        id='enrollment_expiry',
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        side_effect_drain_job,
        'interval',
        seconds=max(5, settings.side_effect_interval_seconds),
        id='side_effect_drain',
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info('scheduler_started jobs=%s', len(scheduler.get_jobs()))


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
