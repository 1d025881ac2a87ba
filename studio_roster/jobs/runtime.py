from __future__ import annotations

import logging
import threading

from sqlalchemy.orm import Session

from studio_roster.db import SessionLocal
from studio_roster.metrics import record_job_outcome, run_timed_job
from studio_roster.request_context import current_business, current_endpoint
from studio_roster.services.business_service import list_active_business_ids


logger = logging.getLogger(__name__)
_lock = threading.Lock()
_running: set[tuple[str, int]] = set()


def acquire_job_lock(job_label: str, business_id: int) -> bool:
    key = (job_label, int(business_id))
    with _lock:
        if key in _running:
            return False
        _running.add(key)
        return True


def release_job_lock(job_label: str, business_id: int) -> None:
    with _lock:
        _running.discard((job_label, int(business_id)))


def with_business_sessions(task, *, job_label: str) -> dict[int, bool]:
    """Run task(db, business_id) once per active business, each in its own session.

    Returns whether the task succeeded for each business it ran for.
    """
    outcomes: dict[int, bool] = {}
    listing: Session = SessionLocal()
    try:
        business_ids = list_active_business_ids(listing)
    finally:
        listing.close()

    for business_id in business_ids:
        if not acquire_job_lock(job_label, business_id):
            logger.info('job_lock_skipped_concurrent job=%s business_id=%s', job_label, business_id)
            continue
        db: Session = SessionLocal()
        endpoint_token = current_endpoint.set(f'job {job_label}')
        business_token = current_business.set(str(business_id))
        try:
            task(db, business_id)
            outcomes[business_id] = True
        except Exception:
            db.rollback()
            logger.exception('job_business_failure business_id=%s job=%s', business_id, job_label)
            outcomes[business_id] = False
        finally:
            current_business.reset(business_token)
            current_endpoint.reset(endpoint_token)
            db.close()
            release_job_lock(job_label, business_id)
        record_job_outcome(job_label, outcomes[business_id])
    return outcomes


def run_job(label: str, task) -> dict[int, bool]:
    return run_timed_job(label, lambda: with_business_sessions(task, job_label=label))
