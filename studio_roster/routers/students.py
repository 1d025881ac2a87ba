from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.schemas import StudentCreateRequest
from studio_roster.services.attendance_service import student_attendance_stats
from studio_roster.services.enrollment_service import student_active_enrollments
from studio_roster.services.student_service import create_student, get_student


router = APIRouter(prefix='/api/students', tags=['Students'], route_class=EndpointNameRoute)


@router.post('')
def create(payload: StudentCreateRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = create_student(db, business_id, **payload.model_dump())
    except ValueError as exc:
        raise to_http_error(exc) from exc
    return {'id': row.id, 'name': row.full_name, 'phone': row.phone}


@router.get('/{student_id}')
def get_one(student_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = get_student(db, business_id, student_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return {
        'id': row.id,
        'first_name': row.first_name,
        'last_name': row.last_name,
        'phone': row.phone,
        'is_active': row.is_active,
        'active_course_ids': [e.course_id for e in student_active_enrollments(db, business_id, row.id)],
        'attendance': student_attendance_stats(db, business_id, row.id),
    }
