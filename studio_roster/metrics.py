from __future__ import annotations

import functools
import logging
import threading
import time
from collections import Counter
from typing import Callable

from studio_roster.config import settings


logger = logging.getLogger('studio_roster.metrics')

ROSTER_EVENTS = ('instance_created', 'instance_reused', 'instance_regenerated', 'sync_failed')


class RosterEventCounter:
    """Process-wide tallies of roster events and of per-business job outcomes.

    Counts accumulate until drained; ``flush_roster_metrics`` drains them into
    one log line on shutdown.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: Counter[str] = Counter()
        self._jobs: dict[str, Counter[str]] = {}

    def record(self, event: str) -> None:
        if event not in ROSTER_EVENTS:
            raise ValueError(f'Unknown roster event: {event}')
        with self._lock:
            self._events[event] += 1

    def record_job(self, job_label: str, ok: bool) -> None:
        with self._lock:
            outcome = 'succeeded' if ok else 'failed'
            self._jobs.setdefault(job_label, Counter())[outcome] += 1

    def _snapshot_locked(self) -> dict:
        return {
            'events': {event: self._events[event] for event in ROSTER_EVENTS},
            'jobs': {
                label: {'succeeded': counts['succeeded'], 'failed': counts['failed']}
                for label, counts in sorted(self._jobs.items())
            },
        }

    def snapshot(self) -> dict:
        with self._lock:
            return self._snapshot_locked()

    def drain(self) -> dict:
        with self._lock:
            snapshot = self._snapshot_locked()
            self._events.clear()
            self._jobs.clear()
            return snapshot


_roster_counter = RosterEventCounter()


def record_roster_event(event: str) -> None:
    _roster_counter.record(event)


def record_job_outcome(job_label: str, ok: bool) -> None:
    _roster_counter.record_job(job_label, ok)


def roster_event_counts() -> dict[str, int]:
    return _roster_counter.snapshot()['events']


def job_outcomes() -> dict[str, dict[str, int]]:
    return _roster_counter.snapshot()['jobs']


def flush_roster_metrics() -> dict:
    drained = _roster_counter.drain()
    events = drained['events']
    logger.info(
        'roster_metrics instance_created=%s instance_reused=%s instance_regenerated=%s sync_failed=%s',
        events['instance_created'],
        events['instance_reused'],
        events['instance_regenerated'],
        events['sync_failed'],
    )
    for label, counts in drained['jobs'].items():
        logger.info('roster_job_outcomes job=%s succeeded=%s failed=%s', label, counts['succeeded'], counts['failed'])
    return drained


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    """Log roster service calls slower than the threshold (``metrics_slow_ms`` by default)."""

    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        @functools.wraps(func)
        def wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                if duration_ms >= threshold_value:
                    logger.info('service_timer label=%s duration_ms=%.2f', label, duration_ms)

        return wrapper

    return decorator


def run_timed_job(label: str, fn: Callable[[], dict[int, bool]]) -> dict[int, bool]:
    """Run a per-business job sweep and log how many businesses succeeded."""
    start = time.perf_counter()
    logger.info('job_start name=%s', label)
    try:
        outcomes = fn()
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.exception('job_failed name=%s duration_ms=%.2f', label, duration_ms)
        raise
    duration_ms = (time.perf_counter() - start) * 1000.0
    failed = sum(1 for ok in outcomes.values() if not ok)
    logger.info(
        'job_end name=%s businesses=%s failed=%s duration_ms=%.2f',
        label,
        len(outcomes),
        failed,
        duration_ms,
    )
    return outcomes
