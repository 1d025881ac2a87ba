from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.metrics import record_roster_event
from studio_roster.models import SyncFailureLog


logger = logging.getLogger(__name__)


def log_sync_failure(
    db: Session,
    *,
    business_id: int,
    operation: str,
    entity_type: str,
    entity_id: int | None,
    error_message: str,
    time_provider: TimeProvider = default_time_provider,
) -> None:
    """Persist a swallowed best-effort failure. Never raises."""
    record_roster_event('sync_failed')
    row = SyncFailureLog(
        business_id=int(business_id or 0),
        operation=str(operation or 'unknown'),
        entity_type=str(entity_type or ''),
        entity_id=int(entity_id) if entity_id is not None else None,
        error_message=str(error_message or '')[:2000],
        created_at=time_provider.stamp(),
    )
    try:
        db.add(row)
        db.commit()
    except Exception:
        db.rollback()
        logger.error(
            'sync_failure_log_write_failed',
            extra={
                'operation': operation,
                'business_id': business_id,
                'entity_type': entity_type,
                'entity_id': entity_id,
            },
        )


def list_sync_failures(db: Session, business_id: int, *, operation: str | None = None, limit: int = 100) -> list[SyncFailureLog]:
    query = db.query(SyncFailureLog).filter(SyncFailureLog.business_id == business_id)
    if operation:
        query = query.filter(SyncFailureLog.operation == operation)
    return query.order_by(SyncFailureLog.created_at.desc(), SyncFailureLog.id.desc()).limit(int(limit)).all()
