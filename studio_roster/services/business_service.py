from __future__ import annotations

from sqlalchemy.orm import Session

from studio_roster.core.errors import NotFound
from studio_roster.models import Business


def create_business(db: Session, *, name: str, slug: str, timezone: str = 'Asia/Jerusalem') -> Business:
    clean_slug = (slug or '').strip().lower()
    if not clean_slug:
        raise ValueError('slug is required')
    row = Business(name=name.strip() or clean_slug, slug=clean_slug, timezone=timezone, is_active=True)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_business(db: Session, business_id: int) -> Business:
    row = db.query(Business).filter(Business.id == int(business_id)).first()
    if not row:
        raise NotFound('Business', business_id)
    return row


def get_active_business(db: Session, business_id: int) -> Business:
    row = get_business(db, business_id)
    if not row.is_active:
        raise NotFound('Business', business_id)
    return row


def list_active_business_ids(db: Session) -> list[int]:
    return [
        int(business_id)
        for (business_id,) in db.query(Business.id).filter(Business.is_active.is_(True)).order_by(Business.id.asc()).all()
    ]
