from __future__ import annotations

from datetime import date, timedelta
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from studio_roster.core.errors import DependencyFailure
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import AttendanceRecord, AttendanceStatus, ClassInstance, Student
from studio_roster.services.instance_service import get_instance
from studio_roster.services.sync_failure_service import log_sync_failure

logger = logging.getLogger(__name__)

MARKABLE_STATUSES = (
    AttendanceStatus.PRESENT.value,
    AttendanceStatus.ABSENT.value,
    AttendanceStatus.LATE.value,
    AttendanceStatus.EXCUSED.value,
)
MARKED_BY_TYPES = ('teacher', 'admin')


def normalize_attendance_status(status: str) -> str:
    clean = (status or '').strip().lower()
    if clean != AttendanceStatus.NONE.value and clean not in MARKABLE_STATUSES:
        raise ValueError(f'Invalid attendance status: {status}')
    return clean


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DependencyFailure(operation, exc) from exc


def get_attendance_record(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    *,
    is_temp: bool = False,
) -> AttendanceRecord | None:
    return (
        db.query(AttendanceRecord)
        .filter(
            AttendanceRecord.business_id == business_id,
            AttendanceRecord.instance_id == int(instance_id),
            AttendanceRecord.student_id == int(student_id),
            AttendanceRecord.is_temp.is_(bool(is_temp)),
        )
        .first()
    )


def _apply(row: AttendanceRecord, status: str, notes: str, marked_by: int | None, marked_by_type: str, now) -> None:
    row.status = status
    row.notes = notes or ''
    row.marked_by = marked_by
    row.marked_by_type = marked_by_type
    row.updated_at = now


def mark(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    status: str,
    *,
    notes: str = '',
    marked_by: int | None = None,
    marked_by_type: str = 'admin',
    is_temp: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> AttendanceRecord | None:
    """Upsert one attendance record per (instance, student). Status 'none' deletes it.

    Last write wins; previous values are not kept.
    """
    clean = normalize_attendance_status(status)
    if marked_by_type not in MARKED_BY_TYPES:
        raise ValueError(f'Invalid marked_by_type: {marked_by_type}')
    instance = get_instance(db, business_id, instance_id)
    existing = get_attendance_record(db, business_id, instance.id, student_id, is_temp=is_temp)

    if clean == AttendanceStatus.NONE.value:
        if existing is None:
            return None
        db.delete(existing)
        _commit(db, 'attendance_unmark')
        logger.info('attendance_unmarked instance_id=%s student_id=%s is_temp=%s', instance.id, student_id, is_temp)
        return None

    now = time_provider.stamp()
    if existing is not None:
        _apply(existing, clean, notes, marked_by, marked_by_type, now)
        _commit(db, 'attendance_mark')
        db.refresh(existing)
        return existing

    row = AttendanceRecord(
        business_id=business_id,
        instance_id=instance.id,
        student_id=int(student_id),
        is_temp=bool(is_temp),
        attendance_date=instance.instance_date,
        status=clean,
        notes=notes or '',
        marked_by=marked_by,
        marked_by_type=marked_by_type,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    try:
        _commit(db, 'attendance_mark')
    except IntegrityError:
        # A concurrent writer created the record first; overwrite it.
        row = get_attendance_record(db, business_id, instance.id, student_id, is_temp=is_temp)
        if row is None:
            raise
        _apply(row, clean, notes, marked_by, marked_by_type, now)
        _commit(db, 'attendance_mark')
    db.refresh(row)
    logger.info(
        'attendance_marked instance_id=%s student_id=%s is_temp=%s status=%s by=%s',
        instance.id,
        student_id,
        is_temp,
        clean,
        marked_by_type,
    )
    return row


def toggle(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    status: str,
    *,
    notes: str = '',
    marked_by: int | None = None,
    marked_by_type: str = 'teacher',
    is_temp: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> AttendanceRecord | None:
    clean = normalize_attendance_status(status)
    existing = get_attendance_record(db, business_id, instance_id, student_id, is_temp=is_temp)
    if existing is not None and existing.status == clean:
        clean = AttendanceStatus.NONE.value
    return mark(
        db,
        business_id,
        instance_id,
        student_id,
        clean,
        notes=notes,
        marked_by=marked_by,
        marked_by_type=marked_by_type,
        is_temp=is_temp,
        time_provider=time_provider,
    )


def autosave(
    db: Session,
    business_id: int,
    instance_id: int,
    student_id: int,
    status: str,
    *,
    use_toggle: bool = True,
    notes: str = '',
    marked_by: int | None = None,
    marked_by_type: str = 'teacher',
    is_temp: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    """Best-effort save from the attendance page. Store failures are logged and swallowed."""
    writer = toggle if use_toggle else mark
    try:
        row = writer(
            db,
            business_id,
            instance_id,
            student_id,
            status,
            notes=notes,
            marked_by=marked_by,
            marked_by_type=marked_by_type,
            is_temp=is_temp,
            time_provider=time_provider,
        )
    except DependencyFailure as exc:
        db.rollback()
        logger.error(
            'attendance_autosave_failed',
            extra={
                'business_id': business_id,
                'instance_id': instance_id,
                'student_id': student_id,
                'status': status,
                'error': str(exc),
            },
        )
        log_sync_failure(
            db,
            business_id=business_id,
            operation='attendance_autosave',
            entity_type='class_instance',
            entity_id=int(instance_id),
            error_message=str(exc),
            time_provider=time_provider,
        )
        return None
    return {
        'saved': True,
        'student_id': int(student_id),
        'is_temp': bool(is_temp),
        'status': row.status if row is not None else AttendanceStatus.NONE.value,
        'record_id': row.id if row is not None else None,
    }


def bulk_mark(
    db: Session,
    business_id: int,
    instance_id: int,
    items: list[dict],
    *,
    marked_by: int | None = None,
    marked_by_type: str = 'admin',
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    instance = get_instance(db, business_id, instance_id)
    summary = {'marked': 0, 'unmarked': 0, 'failed': 0, 'errors': []}
    for item in items:
        student_id = item.get('student_id')
        try:
            row = mark(
                db,
                business_id,
                instance.id,
                int(student_id),
                item.get('status', ''),
                notes=item.get('notes') or '',
                marked_by=marked_by,
                marked_by_type=marked_by_type,
                is_temp=bool(item.get('is_temp', False)),
                time_provider=time_provider,
            )
        except Exception as exc:
            db.rollback()
            summary['failed'] += 1
            summary['errors'].append({'student_id': student_id, 'error': str(exc)})
            logger.warning(
                'attendance_bulk_item_failed instance_id=%s student_id=%s error=%s',
                instance.id,
                student_id,
                exc,
            )
            continue
        if row is None:
            summary['unmarked'] += 1
        else:
            summary['marked'] += 1
    return summary


def get_instance_attendance(db: Session, business_id: int, instance_id: int) -> list[AttendanceRecord]:
    instance = get_instance(db, business_id, instance_id)
    return (
        db.query(AttendanceRecord)
        .filter(AttendanceRecord.business_id == business_id, AttendanceRecord.instance_id == instance.id)
        .order_by(AttendanceRecord.is_temp.asc(), AttendanceRecord.student_id.asc())
        .all()
    )


def _rate(numerator: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(numerator / total * 100, 1)


def _count_statuses(records: list[AttendanceRecord]) -> dict:
    counts = {status: 0 for status in MARKABLE_STATUSES}
    for record in records:
        if record.status in counts:
            counts[record.status] += 1
    return {'total': len(records), **counts}


def instance_attendance_stats(db: Session, business_id: int, instance_id: int) -> dict:
    instance: ClassInstance = get_instance(db, business_id, instance_id)
    records = get_instance_attendance(db, business_id, instance.id)
    stats = _count_statuses(records)
    marked_permanent = {int(record.student_id) for record in records if not record.is_temp}
    stats['not_marked'] = sum(1 for sid in (instance.student_ids or []) if int(sid) not in marked_permanent)
    stats['attendance_rate'] = _rate(stats['present'] + stats['late'], stats['total'])
    return stats


def student_attendance_history(
    db: Session,
    business_id: int,
    student_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[AttendanceRecord]:
    query = db.query(AttendanceRecord).filter(
        AttendanceRecord.business_id == business_id,
        AttendanceRecord.student_id == int(student_id),
        AttendanceRecord.is_temp.is_(False),
    )
    if start_date is not None:
        query = query.filter(AttendanceRecord.attendance_date >= start_date)
    if end_date is not None:
        query = query.filter(AttendanceRecord.attendance_date <= end_date)
    return query.order_by(AttendanceRecord.attendance_date.desc(), AttendanceRecord.id.desc()).all()


def student_attendance_stats(
    db: Session,
    business_id: int,
    student_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    records = student_attendance_history(db, business_id, student_id, start_date=start_date, end_date=end_date)
    stats = _count_statuses(records)
    stats['attendance_rate'] = _rate(stats['present'] + stats['late'], stats['total'])
    stats['punctuality_rate'] = _rate(stats['present'], stats['total'])
    return stats


def students_with_low_attendance(db: Session, business_id: int, *, threshold: float = 70.0) -> list[dict]:
    rows = (
        db.query(Student)
        .filter(Student.business_id == business_id, Student.is_active.is_(True))
        .order_by(Student.id.asc())
        .all()
    )
    flagged: list[dict] = []
    for student in rows:
        stats = student_attendance_stats(db, business_id, student.id)
        if stats['total'] > 0 and stats['attendance_rate'] < threshold:
            flagged.append({'student_id': student.id, 'name': student.full_name, 'stats': stats})
    return flagged


def attendance_trend(
    db: Session,
    business_id: int,
    *,
    days: int = 30,
    time_provider: TimeProvider = default_time_provider,
) -> list[dict]:
    end = time_provider.today()
    start = end - timedelta(days=int(days))
    records = (
        db.query(AttendanceRecord)
        .filter(
            AttendanceRecord.business_id == business_id,
            AttendanceRecord.attendance_date >= start,
            AttendanceRecord.attendance_date <= end,
        )
        .order_by(AttendanceRecord.attendance_date.asc())
        .all()
    )
    by_day: dict[date, list[AttendanceRecord]] = {}
    for record in records:
        by_day.setdefault(record.attendance_date, []).append(record)
    trend = []
    for day, day_records in by_day.items():
        stats = _count_statuses(day_records)
        stats['attendance_rate'] = _rate(stats['present'] + stats['late'], stats['total'])
        trend.append({'date': day.isoformat(), **stats})
    return trend
