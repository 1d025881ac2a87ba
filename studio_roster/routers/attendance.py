from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import AttendanceRecord
from studio_roster.schemas import AttendanceBulkRequest, AttendanceMarkRequest
from studio_roster.services.attendance_service import (
    attendance_trend,
    autosave,
    bulk_mark,
    get_instance_attendance,
    instance_attendance_stats,
    mark,
    student_attendance_stats,
    students_with_low_attendance,
    toggle,
)


router = APIRouter(prefix='/api/attendance', tags=['Attendance'], route_class=EndpointNameRoute)


def serialize_record(row: AttendanceRecord | None) -> dict | None:
    if row is None:
        return None
    return {
        'id': row.id,
        'instance_id': row.instance_id,
        'student_id': row.student_id,
        'is_temp': row.is_temp,
        'date': row.attendance_date,
        'status': row.status,
        'notes': row.notes,
        'marked_by': row.marked_by,
        'marked_by_type': row.marked_by_type,
        'updated_at': row.updated_at,
    }


def _write(writer, payload: AttendanceMarkRequest, business_id: int, db: Session) -> dict:
    try:
        row = writer(
            db,
            business_id,
            payload.instance_id,
            payload.student_id,
            payload.status,
            notes=payload.notes,
            marked_by=payload.marked_by,
            marked_by_type=payload.marked_by_type,
            is_temp=payload.is_temp,
        )
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {'record': serialize_record(row), 'status': row.status if row is not None else 'none'}


@router.post('/mark')
def mark_one(payload: AttendanceMarkRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    return _write(mark, payload, business_id, db)


@router.post('/toggle')
def toggle_one(payload: AttendanceMarkRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    return _write(toggle, payload, business_id, db)


@router.post('/autosave')
def autosave_one(payload: AttendanceMarkRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        result = autosave(
            db,
            business_id,
            payload.instance_id,
            payload.student_id,
            payload.status,
            notes=payload.notes,
            marked_by=payload.marked_by,
            marked_by_type=payload.marked_by_type,
            is_temp=payload.is_temp,
        )
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return result or {'saved': False}


@router.post('/bulk')
def bulk(payload: AttendanceBulkRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return bulk_mark(
            db,
            business_id,
            payload.instance_id,
            [item.model_dump() for item in payload.items],
            marked_by=payload.marked_by,
            marked_by_type=payload.marked_by_type,
        )
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.get('/instance/{instance_id}')
def instance_records(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return [serialize_record(row) for row in get_instance_attendance(db, business_id, instance_id)]
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.get('/instance/{instance_id}/stats')
def instance_stats(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return instance_attendance_stats(db, business_id, instance_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.get('/student/{student_id}/stats')
def student_stats(
    student_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    return student_attendance_stats(db, business_id, student_id, start_date=start_date, end_date=end_date)


@router.get('/low')
def low_attendance(
    threshold: float = Query(default=70.0, ge=0, le=100),
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    return students_with_low_attendance(db, business_id, threshold=threshold)


@router.get('/trend')
def trend(
    days: int = Query(default=30, ge=1, le=366),
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    return attendance_trend(db, business_id, days=days)
