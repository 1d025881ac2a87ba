from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from studio_roster.core.errors import InvalidState, NotFound
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import ClassTemplate, Course, CourseStatus, CourseTemplate
from studio_roster.services.template_service import touch_template

_EDITABLE_FIELDS = ('name', 'start_date', 'end_date', 'max_students', 'description')
_STATUSES = {status.value for status in CourseStatus}


def _dedupe(template_ids: list[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for template_id in template_ids or []:
        clean = int(template_id)
        if clean in seen:
            continue
        seen.add(clean)
        ordered.append(clean)
    return ordered


def _validate_templates_exist(db: Session, business_id: int, template_ids: list[int]) -> None:
    if not template_ids:
        return
    found = {
        int(template_id)
        for (template_id,) in (
            db.query(ClassTemplate.id)
            .filter(ClassTemplate.business_id == business_id, ClassTemplate.id.in_(template_ids))
            .all()
        )
    }
    missing = [template_id for template_id in template_ids if template_id not in found]
    if missing:
        raise NotFound('Class template', missing[0])


def _validate_window(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValueError('end_date must be on or after start_date')


def create_course(
    db: Session,
    business_id: int,
    *,
    name: str,
    template_ids: list[int],
    start_date: date,
    end_date: date,
    max_students: int | None = None,
    description: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> Course:
    ordered_ids = _dedupe(template_ids)
    if not ordered_ids:
        raise InvalidState('An active course needs at least one template')
    _validate_window(start_date, end_date)
    _validate_templates_exist(db, business_id, ordered_ids)
    now = time_provider.stamp()
    row = Course(
        business_id=business_id,
        name=(name or '').strip() or 'Course',
        start_date=start_date,
        end_date=end_date,
        status=CourseStatus.ACTIVE.value,
        max_students=max_students,
        description=description or '',
        created_at=now,
        updated_at=now,
    )
    row.template_links = [
        CourseTemplate(template_id=template_id, position=position)
        for position, template_id in enumerate(ordered_ids)
    ]
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_course(db: Session, business_id: int, course_id: int) -> Course:
    row = (
        db.query(Course)
        .filter(Course.business_id == business_id, Course.id == int(course_id))
        .first()
    )
    if not row:
        raise NotFound('Course', course_id)
    return row


def list_courses(db: Session, business_id: int, *, status: str | None = None) -> list[Course]:
    query = db.query(Course).filter(Course.business_id == business_id)
    if status:
        query = query.filter(Course.status == status)
    return query.order_by(Course.start_date.desc(), Course.id.desc()).all()


def update_course(
    db: Session,
    business_id: int,
    course_id: int,
    updates: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Course:
    row = get_course(db, business_id, course_id)
    for field in _EDITABLE_FIELDS:
        if field in updates and updates[field] is not None:
            setattr(row, field, updates[field])
    _validate_window(row.start_date, row.end_date)
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def update_course_status(
    db: Session,
    business_id: int,
    course_id: int,
    status: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Course:
    clean = (status or '').strip().lower()
    if clean not in _STATUSES:
        raise ValueError(f'Invalid course status: {status}')
    row = get_course(db, business_id, course_id)
    if clean == CourseStatus.ACTIVE.value and not row.template_links:
        raise InvalidState('An active course needs at least one template')
    row.status = clean
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def add_templates_to_course(
    db: Session,
    business_id: int,
    course_id: int,
    template_ids: list[int],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Course:
    row = get_course(db, business_id, course_id)
    current = row.template_ids
    new_ids = [template_id for template_id in _dedupe(template_ids) if template_id not in current]
    if not new_ids:
        return row
    _validate_templates_exist(db, business_id, new_ids)
    next_position = max((link.position for link in row.template_links), default=-1) + 1
    for offset, template_id in enumerate(new_ids):
        row.template_links.append(CourseTemplate(template_id=template_id, position=next_position + offset))
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def remove_templates_from_course(
    db: Session,
    business_id: int,
    course_id: int,
    template_ids: list[int],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Course:
    row = get_course(db, business_id, course_id)
    to_remove = set(_dedupe(template_ids))
    remaining = [link for link in row.template_links if int(link.template_id) not in to_remove]
    removed_ids = [int(link.template_id) for link in row.template_links if int(link.template_id) in to_remove]
    if not removed_ids:
        return row
    if not remaining and row.status == CourseStatus.ACTIVE.value:
        raise InvalidState('Cannot remove the last template from an active course')
    row.template_links = remaining
    row.updated_at = time_provider.stamp()
    # The course no longer contains these templates, so their instances only see the change via the template stamp.
    touch_template(db, removed_ids, time_provider=time_provider)
    db.commit()
    db.refresh(row)
    return row


def list_courses_with_template(db: Session, business_id: int, template_id: int) -> list[Course]:
    return (
        db.query(Course)
        .join(CourseTemplate, CourseTemplate.course_id == Course.id)
        .filter(Course.business_id == business_id, CourseTemplate.template_id == int(template_id))
        .order_by(Course.id.asc())
        .all()
    )


def is_course_active_on_date(course: Course, on_date: date) -> bool:
    if course.status != CourseStatus.ACTIVE.value:
        return False
    return course.start_date <= on_date <= course.end_date


def list_active_courses_with_template(db: Session, business_id: int, template_id: int, on_date: date) -> list[Course]:
    return [
        course
        for course in list_courses_with_template(db, business_id, template_id)
        if is_course_active_on_date(course, on_date)
    ]
