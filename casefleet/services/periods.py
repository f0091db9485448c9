"""Period keys for the statistics tiers.

Dates and hours are computed in the fixed business timezone
(settings.business_timezone), not in server-local time, so a report made
at 23:30 local is attributed to the local day regardless of where the
worker runs.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from casefleet.config import settings
from casefleet.models.work_item import as_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def to_business(moment: datetime) -> datetime:
    return as_utc(moment).astimezone(business_tz())


def period_key(now: Optional[datetime] = None) -> tuple[str, int]:
    """(YYYY-MM-DD, hour) of ``now`` in the business timezone."""
    local = to_business(now or utcnow())
    return local.date().isoformat(), local.hour


def business_date(now: Optional[datetime] = None) -> str:
    return period_key(now)[0]


def previous_date(date_str: str) -> str:
    return (date.fromisoformat(date_str) - timedelta(days=1)).isoformat()


def recent_dates(n: int, now: Optional[datetime] = None) -> list[str]:
    """The last ``n`` business dates, newest first."""
    today = date.fromisoformat(business_date(now))
    return [(today - timedelta(days=i)).isoformat() for i in range(n)]


def day_bounds(date_str: str) -> tuple[datetime, datetime]:
    """UTC instants delimiting the business day ``date_str``."""
    tz = business_tz()
    day = date.fromisoformat(date_str)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def last_hour_keys(n: int, now: Optional[datetime] = None) -> list[tuple[str, int]]:
    """Period keys of the last ``n`` hours in chronological order."""
    now = now or utcnow()
    keys = [period_key(now - timedelta(hours=i)) for i in range(n)]
    keys.reverse()
    return keys
