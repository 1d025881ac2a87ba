from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from studio_roster.config import settings
from studio_roster.core.errors import (
    AlreadyEnrolled,
    DependencyFailure,
    InvalidState,
    NotEnrolled,
    NotFound,
)
from studio_roster.db import get_db
from studio_roster.services.business_service import get_active_business


def _resolve_business_id(request: Request) -> int:
    raw = (request.headers.get(settings.business_header) or '').strip()
    try:
        business_id = int(raw)
    except ValueError:
        business_id = 0
    if business_id <= 0:
        raise HTTPException(status_code=404, detail='Business not found')
    return business_id


def require_business_id(request: Request, db: Session = Depends(get_db)) -> int:
    """Tenant comes from the header set by the auth layer in front of the app; it must be an active business."""
    business_id = _resolve_business_id(request)
    try:
        get_active_business(db, business_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail='Business not found') from exc
    return business_id


def to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (AlreadyEnrolled, NotEnrolled, InvalidState)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, DependencyFailure):
        return HTTPException(status_code=503, detail='Storage temporarily unavailable')
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail='Internal error')
