from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import TempStudent
from studio_roster.schemas import TempStudentConvertRequest, TempStudentCreateRequest, TempStudentUpdateRequest
from studio_roster.services.temp_student_service import (
    convert_temp_student,
    create_temp_student,
    deactivate_temp_student,
    list_temp_students_for_instance,
    update_temp_student,
)


router = APIRouter(prefix='/api/temp-students', tags=['Temporary Students'], route_class=EndpointNameRoute)


def serialize_temp_student(row: TempStudent) -> dict:
    return {
        'id': row.id,
        'instance_id': row.instance_id,
        'template_id': row.template_id,
        'name': row.name,
        'phone': row.phone,
        'notes': row.notes,
        'active': row.active,
        'converted_student_id': row.converted_student_id,
    }


@router.post('')
def create(payload: TempStudentCreateRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = create_temp_student(
            db,
            business_id,
            payload.instance_id,
            name=payload.name,
            phone=payload.phone,
            notes=payload.notes,
            created_by=payload.created_by,
        )
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_temp_student(row)


@router.get('/instance/{instance_id}')
def list_for_instance(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    return [serialize_temp_student(row) for row in list_temp_students_for_instance(db, business_id, instance_id)]


@router.patch('/{temp_student_id}')
def update(
    temp_student_id: int,
    payload: TempStudentUpdateRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = update_temp_student(db, business_id, temp_student_id, payload.model_dump(exclude_unset=True))
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_temp_student(row)


@router.delete('/{temp_student_id}')
def delete(temp_student_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = deactivate_temp_student(db, business_id, temp_student_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_temp_student(row)


@router.post('/{temp_student_id}/convert')
def convert(
    temp_student_id: int,
    payload: TempStudentConvertRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        student = convert_temp_student(
            db,
            business_id,
            temp_student_id,
            course_id=payload.course_id,
            effective_from=payload.effective_from,
        )
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {'student_id': student.id, 'name': student.full_name}
