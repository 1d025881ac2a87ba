from __future__ import annotations

from datetime import date, datetime
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_roster.core.errors import InvalidState, NotFound
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.metrics import record_roster_event, timed_service
from studio_roster.models import ClassInstance, ClassTemplate, InstanceStatus
from studio_roster.services.course_service import list_active_courses_with_template
from studio_roster.services.enrollment_service import course_student_ids
from studio_roster.services.template_service import get_template
from studio_roster.utils.date_utils import format_hhmm, iter_days, normalize_day, studio_day_of_week

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ('name', 'start_time', 'duration_minutes', 'teacher_id', 'location', 'notes', 'student_ids')
_STATUSES = {status.value for status in InstanceStatus}


def compute_roster(db: Session, business_id: int, template_id: int, on_date: date) -> list[int]:
    """Union of students actively enrolled on on_date across every active course holding the template."""
    day = normalize_day(on_date)
    roster: list[int] = []
    seen: set[int] = set()
    for course in list_active_courses_with_template(db, business_id, template_id, day):
        for student_id in course_student_ids(db, business_id, course.id, day):
            if student_id in seen:
                continue
            seen.add(student_id)
            roster.append(student_id)
    return roster


def find_instance_for_day(db: Session, business_id: int, template_id: int, on_date: date | datetime) -> ClassInstance | None:
    day = normalize_day(on_date)
    return (
        db.query(ClassInstance)
        .filter(
            ClassInstance.business_id == business_id,
            ClassInstance.template_id == int(template_id),
            or_(ClassInstance.instance_date == day, ClassInstance.original_date == day),
        )
        .order_by(ClassInstance.id.asc())
        .first()
    )


def _build_instance(template: ClassTemplate, day: date, student_ids: list[int], now: datetime) -> ClassInstance:
    return ClassInstance(
        business_id=template.business_id,
        template_id=template.id,
        name=template.name,
        instance_date=day,
        start_time=template.start_time,
        duration_minutes=template.duration_minutes,
        teacher_id=template.teacher_id,
        location=template.location or '',
        status=InstanceStatus.SCHEDULED.value,
        student_ids=list(student_ids),
        is_modified=False,
        notes='',
        created_at=now,
        updated_at=now,
        roster_synced_at=now,
    )


@timed_service('materialize_instance')
def materialize_instance(
    db: Session,
    business_id: int,
    template_id: int,
    on_date: date | datetime,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[ClassInstance, bool]:
    day = normalize_day(on_date)
    existing = find_instance_for_day(db, business_id, template_id, day)
    if existing is not None:
        record_roster_event('instance_reused')
        return existing, False

    template = get_template(db, business_id, template_id)
    roster = compute_roster(db, business_id, template.id, day)
    row = _build_instance(template, day, roster, time_provider.stamp())
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = find_instance_for_day(db, business_id, template_id, day)
        if winner is None:
            raise
        logger.info(
            'instance_create_race_lost business_id=%s template_id=%s date=%s instance_id=%s',
            business_id,
            template_id,
            day,
            winner.id,
        )
        record_roster_event('instance_reused')
        return winner, False
    db.refresh(row)
    record_roster_event('instance_created')
    logger.info(
        'instance_materialized business_id=%s template_id=%s date=%s instance_id=%s students=%s',
        business_id,
        template_id,
        day,
        row.id,
        len(roster),
    )
    return row, True


def get_or_create_instance(
    db: Session,
    business_id: int,
    template_id: int,
    on_date: date | datetime,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    row, _ = materialize_instance(db, business_id, template_id, on_date, time_provider=time_provider)
    return row


def create_standalone_instance(
    db: Session,
    business_id: int,
    *,
    name: str,
    instance_date: date,
    start_time: str,
    duration_minutes: int = 60,
    teacher_id: int | None = None,
    location: str = '',
    student_ids: list[int] | None = None,
    notes: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    if duration_minutes <= 0:
        raise ValueError('duration_minutes must be positive')
    now = time_provider.stamp()
    row = ClassInstance(
        business_id=business_id,
        template_id=None,
        name=(name or '').strip() or 'Class',
        instance_date=normalize_day(instance_date),
        start_time=format_hhmm(start_time),
        duration_minutes=int(duration_minutes),
        teacher_id=teacher_id,
        location=location or '',
        status=InstanceStatus.SCHEDULED.value,
        student_ids=list(dict.fromkeys(int(sid) for sid in (student_ids or []))),
        is_modified=False,
        notes=notes or '',
        created_at=now,
        updated_at=now,
        roster_synced_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_instance(db: Session, business_id: int, instance_id: int) -> ClassInstance:
    row = (
        db.query(ClassInstance)
        .filter(ClassInstance.business_id == business_id, ClassInstance.id == int(instance_id))
        .first()
    )
    if not row:
        raise NotFound('Class instance', instance_id)
    return row


def list_instances(
    db: Session,
    business_id: int,
    *,
    template_id: int | None = None,
    teacher_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[ClassInstance]:
    query = db.query(ClassInstance).filter(ClassInstance.business_id == business_id)
    if template_id is not None:
        query = query.filter(ClassInstance.template_id == int(template_id))
    if teacher_id is not None:
        query = query.filter(ClassInstance.teacher_id == int(teacher_id))
    if status:
        query = query.filter(ClassInstance.status == status)
    if start_date is not None:
        query = query.filter(ClassInstance.instance_date >= start_date)
    if end_date is not None:
        query = query.filter(ClassInstance.instance_date <= end_date)
    order = ClassInstance.instance_date.desc() if descending else ClassInstance.instance_date.asc()
    query = query.order_by(order, ClassInstance.start_time.asc(), ClassInstance.id.asc())
    if limit:
        query = query.limit(int(limit))
    return query.all()


def update_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    updates: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    """Manual edit. Marks the instance modified so regeneration never touches it again."""
    row = get_instance(db, business_id, instance_id)
    for field in _EDITABLE_FIELDS:
        if field not in updates or updates[field] is None:
            continue
        value = updates[field]
        if field == 'start_time':
            value = format_hhmm(value)
        elif field == 'student_ids':
            value = list(dict.fromkeys(int(sid) for sid in value))
        elif field == 'duration_minutes' and int(value) <= 0:
            raise ValueError('duration_minutes must be positive')
        setattr(row, field, value)
    row.is_modified = True
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def cancel_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    reason: str = '',
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    row = get_instance(db, business_id, instance_id)
    now = time_provider.stamp()
    row.status = InstanceStatus.CANCELLED.value
    row.cancellation_reason = reason or ''
    row.cancelled_at = now
    row.updated_at = now
    db.commit()
    db.refresh(row)
    return row


def complete_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    row = get_instance(db, business_id, instance_id)
    if row.status == InstanceStatus.CANCELLED.value:
        raise InvalidState('Cannot complete a cancelled class')
    now = time_provider.stamp()
    row.status = InstanceStatus.COMPLETED.value
    row.completed_at = now
    row.updated_at = now
    db.commit()
    db.refresh(row)
    return row


def reschedule_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    new_date: date,
    new_start_time: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    row = get_instance(db, business_id, instance_id)
    if row.status == InstanceStatus.CANCELLED.value:
        raise InvalidState('Cannot reschedule a cancelled class')
    if row.original_date is None:
        row.original_date = row.instance_date
        row.original_start_time = row.start_time
    row.instance_date = normalize_day(new_date)
    row.start_time = format_hhmm(new_start_time)
    row.status = InstanceStatus.RESCHEDULED.value
    row.is_modified = True
    row.updated_at = time_provider.stamp()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidState('Another class of this template already exists on that date') from exc
    db.refresh(row)
    return row


def add_student_to_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    *,
    mark_modified: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[ClassInstance, bool]:
    """Returns (instance, changed). A manual walk-in passes mark_modified=True; enrollment sync does not."""
    row = get_instance(db, business_id, instance_id)
    current = [int(sid) for sid in (row.student_ids or [])]
    clean_id = int(student_id)
    if clean_id in current:
        return row, False
    row.student_ids = current + [clean_id]
    if mark_modified:
        row.is_modified = True
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row, True


def remove_student_from_instance(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    *,
    mark_modified: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[ClassInstance, bool]:
    row = get_instance(db, business_id, instance_id)
    current = [int(sid) for sid in (row.student_ids or [])]
    clean_id = int(student_id)
    if clean_id not in current:
        return row, False
    row.student_ids = [sid for sid in current if sid != clean_id]
    if mark_modified:
        row.is_modified = True
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row, True


def get_future_instances(db: Session, business_id: int, template_id: int, from_date: date) -> list[ClassInstance]:
    return (
        db.query(ClassInstance)
        .filter(
            ClassInstance.business_id == business_id,
            ClassInstance.template_id == int(template_id),
            ClassInstance.instance_date >= normalize_day(from_date),
        )
        .order_by(ClassInstance.instance_date.asc(), ClassInstance.id.asc())
        .all()
    )


def batch_generate_instances(
    db: Session,
    business_id: int,
    template_id: int,
    start_date: date,
    end_date: date,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> list[ClassInstance]:
    template = get_template(db, business_id, template_id)
    start = normalize_day(start_date)
    end = normalize_day(end_date)
    if end < start:
        raise ValueError('end_date must be on or after start_date')
    instances: list[ClassInstance] = []
    for day in iter_days(start, end):
        if studio_day_of_week(day) != int(template.day_of_week):
            continue
        row, _ = materialize_instance(db, business_id, template.id, day, time_provider=time_provider)
        instances.append(row)
    return instances


def is_valid_instance_status(status: str) -> bool:
    return (status or '').strip().lower() in _STATUSES
