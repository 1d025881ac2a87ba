from __future__ import annotations

from datetime import date, timedelta
import logging

from sqlalchemy.orm import Session

from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.metrics import timed_service
from studio_roster.models import Enrollment
from studio_roster.services.course_service import get_course
from studio_roster.services.enrollment_service import enroll, unenroll
from studio_roster.services.instance_service import (
    add_student_to_instance,
    compute_roster,
    get_future_instances,
    remove_student_from_instance,
)
from studio_roster.services.sync_failure_service import log_sync_failure
from studio_roster.utils.date_utils import normalize_day

logger = logging.getLogger(__name__)

SYNC_ACTIONS = ('add', 'remove')


def _empty_summary() -> dict:
    return {'updated': 0, 'already_done': 0, 'failed': 0, 'errors': []}


@timed_service('sync_enrollment_to_instances')
def sync_enrollment_to_instances(
    db: Session,
    business_id: int,
    course_id: int,
    student_id: int,
    effective_date: date,
    action: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Push one enrollment change into the course's materialized instances from effective_date on.

    Only instances inside the course window are touched. A removal leaves the
    student on any instance they still attend through another course.

    Each instance is committed on its own. A failing instance is rolled back,
    logged and counted; the remaining instances are still updated.
    """
    clean_action = (action or '').strip().lower()
    if clean_action not in SYNC_ACTIONS:
        raise ValueError(f'Invalid sync action: {action}')
    course = get_course(db, business_id, course_id)
    from_date = normalize_day(effective_date)
    push = add_student_to_instance if clean_action == 'add' else remove_student_from_instance

    summary = _empty_summary()
    targets: list[tuple[int, int, date]] = []
    for template_id in course.template_ids:
        for instance in get_future_instances(db, business_id, template_id, max(from_date, course.start_date)):
            if instance.instance_date > course.end_date:
                continue
            targets.append((int(template_id), int(instance.id), instance.instance_date))

    for template_id, instance_id, instance_date in targets:
        if clean_action == 'remove' and int(student_id) in compute_roster(db, business_id, template_id, instance_date):
            # Still enrolled on that date through another course sharing the template.
            summary['already_done'] += 1
            continue
        try:
            _, changed = push(db, business_id, instance_id, student_id, time_provider=time_provider)
        except Exception as exc:
            db.rollback()
            summary['failed'] += 1
            summary['errors'].append({'instance_id': instance_id, 'error': str(exc)})
            logger.error(
                'enrollment_sync_failed',
                extra={
                    'business_id': business_id,
                    'course_id': course.id,
                    'template_id': template_id,
                    'instance_id': instance_id,
                    'student_id': student_id,
                    'action': clean_action,
                    'error': str(exc),
                },
            )
            log_sync_failure(
                db,
                business_id=business_id,
                operation=f'enrollment_sync_{clean_action}',
                entity_type='class_instance',
                entity_id=instance_id,
                error_message=str(exc),
                time_provider=time_provider,
            )
            continue
        if changed:
            summary['updated'] += 1
        else:
            summary['already_done'] += 1

    logger.info(
        'enrollment_sync_done business_id=%s course_id=%s student_id=%s action=%s updated=%s already_done=%s failed=%s',
        business_id,
        course.id,
        student_id,
        clean_action,
        summary['updated'],
        summary['already_done'],
        summary['failed'],
    )
    return summary


def enroll_and_sync(
    db: Session,
    business_id: int,
    course_id: int,
    student_id: int,
    effective_from: date,
    *,
    notes: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> tuple[Enrollment, dict]:
    enrollment = enroll(
        db,
        business_id,
        course_id,
        student_id,
        effective_from,
        notes=notes,
        time_provider=time_provider,
    )
    summary = sync_enrollment_to_instances(
        db,
        business_id,
        course_id,
        student_id,
        enrollment.effective_from,
        'add',
        time_provider=time_provider,
    )
    return enrollment, summary


def unenroll_and_sync(
    db: Session,
    business_id: int,
    course_id: int,
    student_id: int,
    effective_to: date,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[Enrollment, dict]:
    enrollment = unenroll(db, business_id, course_id, student_id, effective_to, time_provider=time_provider)
    # effective_to is the last attended day, so removal starts the day after.
    summary = sync_enrollment_to_instances(
        db,
        business_id,
        course_id,
        student_id,
        enrollment.effective_to + timedelta(days=1),
        'remove',
        time_provider=time_provider,
    )
    return enrollment, summary
