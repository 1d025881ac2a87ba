from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import ClassTemplate
from studio_roster.routers.instances import serialize_instance
from studio_roster.schemas import TemplateCreateRequest, TemplateUpdateRequest
from studio_roster.services.template_service import (
    create_template,
    deactivate_template,
    get_template,
    list_template_instances,
    list_templates,
    update_template,
)


router = APIRouter(prefix='/api/templates', tags=['Class Templates'], route_class=EndpointNameRoute)


def serialize_template(row: ClassTemplate) -> dict:
    return {
        'id': row.id,
        'name': row.name,
        'day_of_week': row.day_of_week,
        'start_time': row.start_time,
        'duration_minutes': row.duration_minutes,
        'teacher_id': row.teacher_id,
        'location': row.location,
        'is_active': row.is_active,
        'updated_at': row.updated_at,
    }


@router.post('')
def create(payload: TemplateCreateRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = create_template(db, business_id, **payload.model_dump())
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_template(row)


@router.get('')
def list_all(
    active: bool | None = None,
    teacher_id: int | None = None,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    return [serialize_template(row) for row in list_templates(db, business_id, is_active=active, teacher_id=teacher_id)]


@router.get('/{template_id}')
def get_one(template_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return serialize_template(get_template(db, business_id, template_id))
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.patch('/{template_id}')
def update(
    template_id: int,
    payload: TemplateUpdateRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = update_template(db, business_id, template_id, payload.model_dump(exclude_unset=True))
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_template(row)


@router.post('/{template_id}/deactivate')
def deactivate(template_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = deactivate_template(db, business_id, template_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_template(row)


@router.get('/{template_id}/instances')
def instances(
    template_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=422, detail='end_date must be on or after start_date')
    try:
        rows = list_template_instances(db, business_id, template_id, start_date=start_date, end_date=end_date)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return [serialize_instance(row) for row in rows]
