from __future__ import annotations

from datetime import date
import logging

from sqlalchemy.orm import Session

from studio_roster.core.errors import InvalidState, NotFound, RosterError
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import Student, TempStudent
from studio_roster.services.course_service import get_course
from studio_roster.services.enrollment_sync_service import enroll_and_sync
from studio_roster.services.instance_service import get_instance
from studio_roster.services.student_service import create_student

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ('name', 'phone', 'notes')


def create_temp_student(
    db: Session,
    business_id: int,
    instance_id: int,
    *,
    name: str,
    phone: str = '',
    notes: str = '',
    created_by: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> TempStudent:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('name is required')
    instance = get_instance(db, business_id, instance_id)
    row = TempStudent(
        business_id=business_id,
        instance_id=instance.id,
        template_id=instance.template_id,
        name=clean_name,
        phone=(phone or '').strip(),
        notes=notes or '',
        created_by=created_by,
        active=True,
        created_at=time_provider.stamp(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info('temp_student_created business_id=%s instance_id=%s temp_student_id=%s', business_id, instance.id, row.id)
    return row


def get_temp_student(db: Session, business_id: int, temp_student_id: int) -> TempStudent:
    row = (
        db.query(TempStudent)
        .filter(TempStudent.business_id == business_id, TempStudent.id == int(temp_student_id))
        .first()
    )
    if not row:
        raise NotFound('Temporary student', temp_student_id)
    return row


def list_temp_students_for_instance(db: Session, business_id: int, instance_id: int) -> list[TempStudent]:
    return (
        db.query(TempStudent)
        .filter(
            TempStudent.business_id == business_id,
            TempStudent.instance_id == int(instance_id),
            TempStudent.active.is_(True),
        )
        .order_by(TempStudent.created_at.asc(), TempStudent.id.asc())
        .all()
    )


def update_temp_student(db: Session, business_id: int, temp_student_id: int, updates: dict) -> TempStudent:
    row = get_temp_student(db, business_id, temp_student_id)
    for field in _EDITABLE_FIELDS:
        if field not in updates or updates[field] is None:
            continue
        value = str(updates[field]).strip() if field != 'notes' else updates[field]
        if field == 'name' and not value:
            raise ValueError('name is required')
        setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row


def deactivate_temp_student(db: Session, business_id: int, temp_student_id: int) -> TempStudent:
    row = get_temp_student(db, business_id, temp_student_id)
    row.active = False
    db.commit()
    db.refresh(row)
    return row


def _split_name(name: str) -> tuple[str, str]:
    parts = (name or '').strip().split(' ', 1)
    first = parts[0]
    last = parts[1].strip() if len(parts) > 1 else ''
    return first, last


def convert_temp_student(
    db: Session,
    business_id: int,
    temp_student_id: int,
    *,
    course_id: int | None = None,
    effective_from: date | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> Student:
    """Turn a walk-in into a permanent student, optionally enrolling them in a course."""
    row = get_temp_student(db, business_id, temp_student_id)
    if row.converted_student_id is not None:
        raise InvalidState('Temporary student was already converted')
    if course_id is not None:
        get_course(db, business_id, course_id)
    first_name, last_name = _split_name(row.name)
    student = create_student(
        db,
        business_id,
        first_name=first_name,
        last_name=last_name,
        phone=row.phone,
        notes=row.notes,
    )
    if course_id is not None:
        try:
            enroll_and_sync(
                db,
                business_id,
                course_id,
                student.id,
                effective_from or time_provider.today(),
                time_provider=time_provider,
            )
        except RosterError:
            # The walk-in stays unconverted, so the new student must not linger.
            db.rollback()
            db.delete(student)
            db.commit()
            raise
    row.active = False
    row.converted_student_id = student.id
    row.converted_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    logger.info(
        'temp_student_converted business_id=%s temp_student_id=%s student_id=%s course_id=%s',
        business_id,
        row.id,
        student.id,
        course_id,
    )
    return student
