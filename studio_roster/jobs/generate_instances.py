from __future__ import annotations

from datetime import timedelta
import logging

from sqlalchemy.orm import Session

from studio_roster.config import settings
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.jobs.runtime import run_job
from studio_roster.services.business_service import get_active_business
from studio_roster.services.instance_service import materialize_instance
from studio_roster.services.template_service import list_templates
from studio_roster.utils.date_utils import iter_days, studio_day_of_week

logger = logging.getLogger(__name__)

JOB_LABEL = 'generate_class_instances'


def generate_upcoming_instances(
    db: Session,
    business_id: int,
    *,
    days: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Materialize every active template's instances from today for the next `days` days."""
    business = get_active_business(db, business_id)
    window = int(days if days is not None else settings.instance_generation_days)
    if window <= 0:
        raise ValueError('days must be positive')
    start = time_provider.local_now(business.timezone or settings.app_timezone).date()
    end = start + timedelta(days=window - 1)

    summary = {'created': 0, 'existing': 0, 'failed': 0}
    for template in list_templates(db, business.id, is_active=True):
        for day in iter_days(start, end):
            if studio_day_of_week(day) != int(template.day_of_week):
                continue
            try:
                _, created = materialize_instance(db, business.id, template.id, day, time_provider=time_provider)
            except Exception:
                db.rollback()
                summary['failed'] += 1
                logger.exception(
                    'instance_generation_failed business_id=%s template_id=%s date=%s',
                    business.id,
                    template.id,
                    day,
                )
                continue
            if created:
                summary['created'] += 1
            else:
                summary['existing'] += 1

    logger.info(
        'instance_generation_done business_id=%s start=%s end=%s created=%s existing=%s failed=%s',
        business.id,
        start,
        end,
        summary['created'],
        summary['existing'],
        summary['failed'],
    )
    return summary


def execute() -> None:
    run_job(JOB_LABEL, lambda db, business_id: generate_upcoming_instances(db, business_id))
