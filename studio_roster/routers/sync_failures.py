from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from studio_roster.core.router_guard import require_business_id
from studio_roster.db import get_db
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.services.sync_failure_service import list_sync_failures


router = APIRouter(prefix='/api/sync-failures', tags=['Admin Ops'], route_class=EndpointNameRoute)


@router.get('')
def recent(
    operation: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    business_id: int = Depends(require_business_id),
    db: Session = Depends(get_db),
):
    return [
        {
            'id': row.id,
            'operation': row.operation,
            'entity_type': row.entity_type,
            'entity_id': row.entity_id,
            'error_message': row.error_message,
            'created_at': row.created_at,
        }
        for row in list_sync_failures(db, business_id, operation=operation, limit=limit)
    ]
