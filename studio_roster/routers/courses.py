from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import Course
from studio_roster.routers.enrollments import serialize_enrollment
from studio_roster.schemas import CourseCreateRequest, CourseStatusRequest, CourseTemplatesRequest, CourseUpdateRequest
from studio_roster.services.course_service import (
    add_templates_to_course,
    create_course,
    get_course,
    list_courses,
    remove_templates_from_course,
    update_course,
    update_course_status,
)
from studio_roster.services.enrollment_service import list_enrollments


router = APIRouter(prefix='/api/courses', tags=['Courses'], route_class=EndpointNameRoute)


def serialize_course(row: Course) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'template_ids': row.template_ids,
        'start_date': row.start_date,
        'end_date': row.end_date,
        'status': row.status,
        'max_students': row.max_students,
        'description': row.description,
        'updated_at': row.updated_at,
    }


@router.post('')
def create(payload: CourseCreateRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = create_course(db, business_id, **payload.model_dump())
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_course(row)


@router.get('')
def list_all(status: str | None = None, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    return [serialize_course(row) for row in list_courses(db, business_id, status=status)]


@router.get('/{course_id}')
def get_one(course_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return serialize_course(get_course(db, business_id, course_id))
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.patch('/{course_id}')
def update(
    course_id: int,
    payload: CourseUpdateRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = update_course(db, business_id, course_id, payload.model_dump(exclude_unset=True))
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_course(row)


@router.post('/{course_id}/status')
def change_status(
    course_id: int,
    payload: CourseStatusRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = update_course_status(db, business_id, course_id, payload.status)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_course(row)


@router.post('/{course_id}/templates')
def add_templates(
    course_id: int,
    payload: CourseTemplatesRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = add_templates_to_course(db, business_id, course_id, payload.template_ids)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_course(row)


@router.post('/{course_id}/templates/remove')
def remove_templates(
    course_id: int,
    payload: CourseTemplatesRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = remove_templates_from_course(db, business_id, course_id, payload.template_ids)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_course(row)


@router.get('/{course_id}/enrollments')
def enrollments(course_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        get_course(db, business_id, course_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return [serialize_enrollment(row) for row in list_enrollments(db, business_id, course_id=course_id)]
