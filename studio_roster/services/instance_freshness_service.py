from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from studio_roster.core.errors import InvalidState
from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.metrics import record_roster_event
from studio_roster.models import ClassInstance, ClassTemplate, Course, CourseTemplate, Enrollment
from studio_roster.services.instance_service import compute_roster, get_instance

logger = logging.getLogger(__name__)


def instance_needs_regeneration(db: Session, instance: ClassInstance) -> bool:
    """Decide whether a stored roster may be out of date.

    Standalone and manually edited instances are never stale. Otherwise the
    instance is stale when the template, any course containing it, or any
    enrollment of such a course changed after the roster was last synced.
    """
    if instance.template_id is None:
        return False
    if instance.is_modified:
        return False
    synced_at = instance.roster_synced_at or instance.created_at
    if synced_at is None:
        return True

    template_changed = (
        db.query(ClassTemplate.id)
        .filter(ClassTemplate.id == instance.template_id, ClassTemplate.updated_at > synced_at)
        .first()
    )
    if template_changed is not None:
        return True

    course_ids = [
        int(course_id)
        for (course_id,) in (
            db.query(Course.id)
            .join(CourseTemplate, CourseTemplate.course_id == Course.id)
            .filter(Course.business_id == instance.business_id, CourseTemplate.template_id == instance.template_id)
            .all()
        )
    ]
    if not course_ids:
        return False

    course_changed = (
        db.query(Course.id)
        .filter(Course.id.in_(course_ids), Course.updated_at > synced_at)
        .first()
    )
    if course_changed is not None:
        return True

    enrollment_changed = (
        db.query(Enrollment.id)
        .filter(
            Enrollment.business_id == instance.business_id,
            Enrollment.course_id.in_(course_ids),
            Enrollment.updated_at > synced_at,
        )
        .first()
    )
    return enrollment_changed is not None


def _rewrite_roster(db: Session, row: ClassInstance, time_provider: TimeProvider) -> ClassInstance:
    previous = list(row.student_ids or [])
    roster = compute_roster(db, row.business_id, row.template_id, row.instance_date)
    now = time_provider.stamp()
    row.student_ids = roster
    row.roster_synced_at = now
    row.updated_at = now
    db.commit()
    db.refresh(row)
    record_roster_event('instance_regenerated')
    logger.info(
        'instance_regenerated instance_id=%s template_id=%s date=%s before=%s after=%s',
        row.id,
        row.template_id,
        row.instance_date,
        len(previous),
        len(roster),
    )
    return row


def regenerate_instance_roster(
    db: Session,
    business_id: int,
    instance_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    """Explicit recompute of the roster. Works on modified instances too; standalone ones have no source."""
    row = get_instance(db, business_id, instance_id)
    if row.template_id is None:
        raise InvalidState('Cannot regenerate students for a standalone class')
    return _rewrite_roster(db, row, time_provider)


def ensure_fresh(
    db: Session,
    business_id: int,
    instance_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ClassInstance:
    row = get_instance(db, business_id, instance_id)
    if not instance_needs_regeneration(db, row):
        return row
    return _rewrite_roster(db, row, time_provider)
