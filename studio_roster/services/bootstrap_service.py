import logging

from sqlalchemy.orm import Session

from studio_roster.config import settings
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.jobs.generate_instances import generate_upcoming_instances
from studio_roster.models import Business
from studio_roster.services.business_service import create_business, get_active_business, list_active_business_ids


logger = logging.getLogger(__name__)


def run_bootstrap(db: Session, *, slug: str | None = None) -> dict:
    """Seed the first business on an empty database.

    The slug comes from the argument or BOOTSTRAP_BUSINESS_SLUG; without one nothing is seeded.
    """
    if db.query(Business.id).first() is not None:
        return {'ran': False, 'reason': 'businesses_exist'}
    clean_slug = (slug or settings.bootstrap_business_slug or '').strip().lower()
    if not clean_slug:
        logger.warning('bootstrap_skipped missing_business_slug')
        return {'ran': False, 'reason': 'no_business_slug'}
    row = create_business(
        db,
        name=settings.bootstrap_business_name or clean_slug,
        slug=clean_slug,
        timezone=settings.app_timezone,
    )
    logger.info('bootstrap_business_created business_id=%s slug=%s', row.id, row.slug)
    return {'ran': True, 'business_id': row.id, 'slug': row.slug}


def prime_schedules(
    db: Session,
    *,
    days: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, dict]:
    """Materialize upcoming instances for every active studio, keyed by studio slug."""
    primed: dict[str, dict] = {}
    for business_id in list_active_business_ids(db):
        business = get_active_business(db, business_id)
        primed[business.slug] = generate_upcoming_instances(db, business.id, days=days, time_provider=time_provider)
    return primed
