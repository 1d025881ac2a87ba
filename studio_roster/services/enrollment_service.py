from __future__ import annotations

from datetime import date
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_roster.core.errors import AlreadyEnrolled, InvalidState, NotEnrolled, NotFound
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import Enrollment, EnrollmentStatus
from studio_roster.services.course_service import get_course
from studio_roster.services.student_service import get_student
from studio_roster.utils.date_utils import is_active_on, normalize_day

logger = logging.getLogger(__name__)


def get_open_enrollment(db: Session, business_id: int, course_id: int, student_id: int) -> Enrollment | None:
    return (
        db.query(Enrollment)
        .filter(
            Enrollment.business_id == business_id,
            Enrollment.course_id == int(course_id),
            Enrollment.student_id == int(student_id),
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
        )
        .order_by(Enrollment.id.desc())
        .first()
    )


def enroll(
    db: Session,
    business_id: int,
    course_id: int,
    student_id: int,
    effective_from: date,
    *,
    notes: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> Enrollment:
    course = get_course(db, business_id, course_id)
    get_student(db, business_id, student_id)
    if get_open_enrollment(db, business_id, course.id, student_id) is not None:
        raise AlreadyEnrolled('Student is already enrolled in this course')
    now = time_provider.stamp()
    row = Enrollment(
        business_id=business_id,
        course_id=course.id,
        student_id=int(student_id),
        effective_from=normalize_day(effective_from),
        effective_to=None,
        status=EnrollmentStatus.ACTIVE.value,
        notes=notes or '',
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent enroll for the same student and course committed first.
        db.rollback()
        raise AlreadyEnrolled('Student is already enrolled in this course') from exc
    db.refresh(row)
    logger.info(
        'enrollment_created business_id=%s course_id=%s student_id=%s effective_from=%s',
        business_id,
        course.id,
        student_id,
        row.effective_from,
    )
    return row


def unenroll(
    db: Session,
    business_id: int,
    course_id: int,
    student_id: int,
    effective_to: date,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Enrollment:
    row = get_open_enrollment(db, business_id, course_id, student_id)
    if row is None:
        raise NotEnrolled('Student is not enrolled in this course')
    end = normalize_day(effective_to)
    if end < row.effective_from:
        raise InvalidState('effective_to is before the enrollment started')
    row.effective_to = end
    row.status = EnrollmentStatus.COMPLETED.value
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    logger.info(
        'enrollment_closed business_id=%s course_id=%s student_id=%s effective_to=%s',
        business_id,
        course_id,
        student_id,
        end,
    )
    return row


def get_enrollment(db: Session, business_id: int, enrollment_id: int) -> Enrollment:
    row = (
        db.query(Enrollment)
        .filter(Enrollment.business_id == business_id, Enrollment.id == int(enrollment_id))
        .first()
    )
    if not row:
        raise NotFound('Enrollment', enrollment_id)
    return row


def cancel_enrollment(
    db: Session,
    business_id: int,
    enrollment_id: int,
    reason: str = '',
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Enrollment:
    row = get_enrollment(db, business_id, enrollment_id)
    row.status = EnrollmentStatus.CANCELLED.value
    row.cancellation_reason = reason or ''
    row.updated_at = time_provider.stamp()
    db.commit()
    db.refresh(row)
    return row


def list_enrollments(
    db: Session,
    business_id: int,
    *,
    course_id: int | None = None,
    student_id: int | None = None,
    status: str | None = None,
) -> list[Enrollment]:
    query = db.query(Enrollment).filter(Enrollment.business_id == business_id)
    if course_id is not None:
        query = query.filter(Enrollment.course_id == int(course_id))
    if student_id is not None:
        query = query.filter(Enrollment.student_id == int(student_id))
    if status:
        query = query.filter(Enrollment.status == status)
    return query.order_by(Enrollment.created_at.desc(), Enrollment.id.desc()).all()


def active_enrollments(db: Session, business_id: int, course_id: int, on_date: date) -> list[Enrollment]:
    """Enrollments of the course whose [effective_from, effective_to] window covers on_date.

    Cancelled enrollments never count. A completed enrollment still counts inside its window.
    """
    day = normalize_day(on_date)
    candidates = (
        db.query(Enrollment)
        .filter(
            Enrollment.business_id == business_id,
            Enrollment.course_id == int(course_id),
            Enrollment.status != EnrollmentStatus.CANCELLED.value,
            Enrollment.effective_from <= day,
        )
        .order_by(Enrollment.effective_from.asc(), Enrollment.id.asc())
        .all()
    )
    return [row for row in candidates if is_active_on(row.effective_from, row.effective_to, day)]


def course_student_ids(db: Session, business_id: int, course_id: int, on_date: date) -> list[int]:
    return [int(row.student_id) for row in active_enrollments(db, business_id, course_id, on_date)]


def student_active_enrollments(db: Session, business_id: int, student_id: int) -> list[Enrollment]:
    return list_enrollments(db, business_id, student_id=student_id, status=EnrollmentStatus.ACTIVE.value)
