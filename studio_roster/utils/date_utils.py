from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterator


def normalize_day(value: date | datetime | str) -> date:
    """Strip time-of-day; accepts ISO strings as sent by API clients."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or '').strip()
    if not text:
        raise ValueError('date is required')
    if 'T' in text or ' ' in text:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    return date.fromisoformat(text)


def studio_day_of_week(value: date) -> int:
    # Sunday=0 ... Saturday=6, the studio week starts on Sunday.
    return (value.weekday() + 1) % 7


def parse_hhmm(value: str) -> time:
    try:
        hh, mm = str(value).split(':', 1)
        hour = int(hh)
        minute = int(mm)
    except (TypeError, ValueError) as exc:
        raise ValueError('start_time must be HH:MM') from exc
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValueError('start_time must be HH:MM')
    return time(hour=hour, minute=minute)


def format_hhmm(value: str) -> str:
    parsed = parse_hhmm(value)
    return f'{parsed.hour:02d}:{parsed.minute:02d}'


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_active_on(effective_from: date, effective_to: date | None, on_date: date) -> bool:
    if on_date < effective_from:
        return False
    if effective_to is not None and on_date > effective_to:
        return False
    return True
