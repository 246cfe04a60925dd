"""Time helpers: canonical UTC storage and site-local billing months."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo


Clock = Callable[[], datetime]

# Fixed width keeps lexical order identical to chronological order in SQLite.
_STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_storage(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("naive datetimes cannot be persisted")
    return value.astimezone(timezone.utc).strftime(_STORAGE_FORMAT)


def from_storage(value: str) -> datetime:
    return datetime.strptime(value, _STORAGE_FORMAT).replace(tzinfo=timezone.utc)


def to_local(value: datetime, tz_name: str) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz_name))


def billing_month_bounds(
    tz_name: str,
    month: Optional[date] = None,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` of a calendar month in ``tz_name``.

    ``month`` may be any day inside the target month; when omitted the month
    containing ``now`` (default: the current instant) in ``tz_name`` is used.
    """
    zone = ZoneInfo(tz_name)
    if month is None:
        month = to_local(now or utc_now(), tz_name).date()
    local_start = datetime(month.year, month.month, 1, tzinfo=zone)
    if month.month == 12:
        local_end = datetime(month.year + 1, 1, 1, tzinfo=zone)
    else:
        local_end = datetime(month.year, month.month + 1, 1, tzinfo=zone)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)
