from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import Enrollment
from studio_roster.schemas import CancelRequest, EnrollRequest, UnenrollRequest
from studio_roster.services.enrollment_service import cancel_enrollment, get_enrollment, list_enrollments
from studio_roster.services.enrollment_sync_service import enroll_and_sync, unenroll_and_sync


router = APIRouter(prefix='/api/enrollments', tags=['Enrollments'], route_class=EndpointNameRoute)


def serialize_enrollment(row: Enrollment) -> dict:
    return {
        'id': row.id,
        'course_id': row.course_id,
        'student_id': row.student_id,
        'effective_from': row.effective_from,
        'effective_to': row.effective_to,
        'status': row.status,
        'notes': row.notes,
        'cancellation_reason': row.cancellation_reason,
        'updated_at': row.updated_at,
    }


@router.post('/enroll')
def enroll(payload: EnrollRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row, summary = enroll_and_sync(
            db,
            business_id,
            payload.course_id,
            payload.student_id,
            payload.effective_from,
            notes=payload.notes,
        )
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {'enrollment': serialize_enrollment(row), 'sync': summary}


@router.post('/unenroll')
def unenroll(payload: UnenrollRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row, summary = unenroll_and_sync(db, business_id, payload.course_id, payload.student_id, payload.effective_to)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {'enrollment': serialize_enrollment(row), 'sync': summary}


@router.get('')
def list_all(
    course_id: int | None = None,
    student_id: int | None = None,
    status: str | None = None,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    rows = list_enrollments(db, business_id, course_id=course_id, student_id=student_id, status=status)
    return [serialize_enrollment(row) for row in rows]


@router.get('/{enrollment_id}')
def get_one(enrollment_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return serialize_enrollment(get_enrollment(db, business_id, enrollment_id))
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.post('/{enrollment_id}/cancel')
def cancel(
    enrollment_id: int,
    payload: CancelRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = cancel_enrollment(db, business_id, enrollment_id, payload.reason)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_enrollment(row)
