from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from studio_roster.core.errors import RosterError
from studio_roster.core.router_guard import require_business_id, to_http_error
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.models import ClassInstance
from studio_roster.schemas import (
    BatchGenerateRequest,
    CancelRequest,
    InstanceResolveRequest,
    InstanceStudentRequest,
    InstanceUpdateRequest,
    RescheduleRequest,
    StandaloneInstanceRequest,
)
from studio_roster.services.instance_freshness_service import ensure_fresh, regenerate_instance_roster
from studio_roster.services.instance_service import (
    add_student_to_instance,
    batch_generate_instances,
    cancel_instance,
    complete_instance,
    create_standalone_instance,
    get_future_instances,
    is_valid_instance_status,
    list_instances,
    materialize_instance,
    remove_student_from_instance,
    reschedule_instance,
    update_instance,
)
from studio_roster.services.roster_view_service import get_instance_roster
from studio_roster.services.template_service import get_template


router = APIRouter(prefix='/api/instances', tags=['Class Instances'], route_class=EndpointNameRoute)


def serialize_instance(row: ClassInstance) -> dict:
    return {
        'id': row.id,
        'template_id': row.template_id,
        'name': row.name,
        'date': row.instance_date,
        'start_time': row.start_time,
        'duration_minutes': row.duration_minutes,
        'teacher_id': row.teacher_id,
        'location': row.location,
        'status': row.status,
        'student_ids': list(row.student_ids or []),
        'is_modified': row.is_modified,
        'notes': row.notes,
        'cancellation_reason': row.cancellation_reason,
        'original_date': row.original_date,
        'original_start_time': row.original_start_time,
    }


@router.post('/resolve')
def resolve(payload: InstanceResolveRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row, created = materialize_instance(db, business_id, payload.template_id, payload.date)
        if not created:
            row = ensure_fresh(db, business_id, row.id)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {**serialize_instance(row), 'created': created}


@router.post('/standalone')
def create_standalone(
    payload: StandaloneInstanceRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = create_standalone_instance(db, business_id, **payload.model_dump())
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)


@router.post('/batch-generate')
def batch_generate(payload: BatchGenerateRequest, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        rows = batch_generate_instances(db, business_id, payload.template_id, payload.start_date, payload.end_date)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {'count': len(rows), 'instance_ids': [row.id for row in rows]}


@router.get('/future')
def future(
    template_id: int,
    from_date: date,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        get_template(db, business_id, template_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return [serialize_instance(row) for row in get_future_instances(db, business_id, template_id, from_date)]


@router.get('')
def list_all(
    template_id: int | None = None,
    teacher_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    if status and not is_valid_instance_status(status):
        raise HTTPException(status_code=422, detail='Invalid class status')
    rows = list_instances(
        db,
        business_id,
        template_id=template_id,
        teacher_id=teacher_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return [serialize_instance(row) for row in rows]


@router.get('/{instance_id}')
def get_one(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return serialize_instance(ensure_fresh(db, business_id, instance_id))
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.get('/{instance_id}/roster')
def roster(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        return get_instance_roster(db, business_id, instance_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc


@router.patch('/{instance_id}')
def update(
    instance_id: int,
    payload: InstanceUpdateRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = update_instance(db, business_id, instance_id, payload.model_dump(exclude_unset=True))
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)


@router.post('/{instance_id}/cancel')
def cancel(
    instance_id: int,
    payload: CancelRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = cancel_instance(db, business_id, instance_id, payload.reason)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)


@router.post('/{instance_id}/complete')
def complete(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = complete_instance(db, business_id, instance_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)


@router.post('/{instance_id}/reschedule')
def reschedule(
    instance_id: int,
    payload: RescheduleRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row = reschedule_instance(db, business_id, instance_id, payload.new_date, payload.new_start_time)
    except (RosterError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)


@router.post('/{instance_id}/students')
def add_student(
    instance_id: int,
    payload: InstanceStudentRequest,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row, changed = add_student_to_instance(db, business_id, instance_id, payload.student_id, mark_modified=True)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return {**serialize_instance(row), 'changed': changed}


@router.delete('/{instance_id}/students/{student_id}')
def remove_student(
    instance_id: int,
    student_id: int,
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    try:
        row, changed = remove_student_from_instance(db, business_id, instance_id, student_id, mark_modified=True)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return {**serialize_instance(row), 'changed': changed}


@router.post('/{instance_id}/regenerate')
def regenerate(instance_id: int, business_id: int = Depends(require_business_id), db: Session = Depends(get_db)):
    try:
        row = regenerate_instance_roster(db, business_id, instance_id)
    except RosterError as exc:
        raise to_http_error(exc) from exc
    return serialize_instance(row)
