from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from studio_roster.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Jerusalem"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def local_now(self, tz: str) -> datetime:
        return datetime.now(ZoneInfo(tz))

    def stamp(self) -> datetime:
        """Naive UTC timestamp used for every stored created_at/updated_at."""
        return to_utc_naive(self.now())


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


default_time_provider = TimeProvider()
