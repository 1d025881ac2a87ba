from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from studio_roster.core.errors import InvalidState, NotFound
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import ClassInstance, ClassTemplate, Course, CourseStatus, CourseTemplate
from studio_roster.utils.date_utils import format_hhmm

_EDITABLE_FIELDS = ('name', 'day_of_week', 'start_time', 'duration_minutes', 'teacher_id', 'location')


def _validate_duration(duration_minutes: int) -> None:
    if duration_minutes <= 0 or duration_minutes > 600:
        raise ValueError('duration_minutes must be between 1 and 600')


def _validate_day_of_week(day_of_week: int) -> None:
    if day_of_week < 0 or day_of_week > 6:
        raise ValueError('day_of_week must be between 0 and 6')


def create_template(
    db: Session,
    business_id: int,
    *,
    name: str,
    day_of_week: int,
    start_time: str,
    duration_minutes: int = 60,
    teacher_id: int | None = None,
    location: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> ClassTemplate:
    _validate_day_of_week(int(day_of_week))
    _validate_duration(int(duration_minutes))
    now = time_provider.stamp()
    row = ClassTemplate(
        business_id=business_id,
        name=(name or '').strip() or 'Class',
        day_of_week=int(day_of_week),
        start_time=format_hhmm(start_time),
        duration_minutes=int(duration_minutes),
        teacher_id=teacher_id,
        location=location or '',
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_template(db: Session, business_id: int, template_id: int) -> ClassTemplate:
    row = (
        db.query(ClassTemplate)
        .filter(ClassTemplate.business_id == business_id, ClassTemplate.id == int(template_id))
        .first()
    )
    if not row:
        raise NotFound('Class template', template_id)
    return row


def list_templates(
    db: Session,
    business_id: int,
    *,
    is_active: bool | None = None,
    teacher_id: int | None = None,
) -> list[ClassTemplate]:
    query = db.query(ClassTemplate).filter(ClassTemplate.business_id == business_id)
    if is_active is not None:
        query = query.filter(ClassTemplate.is_active.is_(bool(is_active)))
    if teacher_id is not None:
        query = query.filter(ClassTemplate.teacher_id == int(teacher_id))
    return query.order_by(ClassTemplate.day_of_week.asc(), ClassTemplate.start_time.asc(), ClassTemplate.id.asc()).all()


def update_template(
    db: Session,
    business_id: int,
    template_id: int,
    updates: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassTemplate:
    """Edit schedule fields. Existing instances keep the values they were built with."""
    row = get_template(db, business_id, template_id)
    for field in _EDITABLE_FIELDS:
        if field not in updates or updates[field] is None:
            continue
        value = updates[field]
        if field == 'day_of_week':
            _validate_day_of_week(int(value))
            value = int(value)
        elif field == 'duration_minutes':
            _validate_duration(int(value))
            value = int(value)
        elif field == 'start_time':
            value = format_hhmm(value)
        setattr(row, field, value)
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def touch_template(db: Session, template_ids: list[int], *, time_provider: TimeProvider = default_time_provider) -> None:
    if not template_ids:
        return
    now = time_provider.stamp()
    for row in db.query(ClassTemplate).filter(ClassTemplate.id.in_(template_ids)).all():
        row.updated_at = now
    db.flush()


def deactivate_template(
    db: Session,
    business_id: int,
    template_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassTemplate:
    row = get_template(db, business_id, template_id)
    referenced = (
        db.query(Course.id)
        .join(CourseTemplate, CourseTemplate.course_id == Course.id)
        .filter(
            CourseTemplate.template_id == row.id,
            Course.business_id == business_id,
            Course.status == CourseStatus.ACTIVE.value,
        )
        .first()
    )
    if referenced is not None:
        raise InvalidState('Template is still used by an active course')
    row.is_active = False
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def list_template_instances(
    db: Session,
    business_id: int,
    template_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[ClassInstance]:
    get_template(db, business_id, template_id)
    query = db.query(ClassInstance).filter(
        ClassInstance.business_id == business_id,
        ClassInstance.template_id == int(template_id),
    )
    if start_date is not None:
        query = query.filter(ClassInstance.instance_date >= start_date)
    if end_date is not None:
        query = query.filter(ClassInstance.instance_date <= end_date)
    return query.order_by(ClassInstance.instance_date.asc()).all()
