import logging

from apscheduler.schedulers.background import BackgroundScheduler

from studio_roster.config import settings
from studio_roster.jobs import generate_instances


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def generate_instances_job():
    generate_instances.execute()


def start_scheduler():
    scheduler.add_job(
        generate_instances_job,
        'cron',
        day_of_week=settings.instance_generation_cron_day_of_week,
        hour=0,
        minute=0,
        id=generate_instances.JOB_LABEL,
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info('scheduler_started jobs=%s', [job.id for job in scheduler.get_jobs()])


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
