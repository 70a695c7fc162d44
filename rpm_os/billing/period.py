"""Billing period resolution in a clinic's timezone."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rpm_os.billing.errors import InvalidPeriod
from rpm_os.billing.models import BillingPeriod


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidPeriod(f"Unknown clinic timezone: {name!r}") from e


def _to_utc(value: datetime, tz: ZoneInfo) -> datetime:
    # Naive values are clinic-local wall time
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def start_of_month(instant: datetime, tz: ZoneInfo) -> datetime:
    """First instant of the clinic-local calendar month containing ``instant``."""
    local = instant.astimezone(tz)
    return datetime(local.year, local.month, 1, tzinfo=tz).astimezone(timezone.utc)


def resolve_period(
    start: Optional[datetime],
    end: Optional[datetime],
    tz_name: str,
    now: Optional[Callable[[], datetime]] = None,
) -> BillingPeriod:
    """Normalize an optional ``[start, end)`` request into UTC instants.

    ``start`` defaults to the start of the current clinic-local month and
    ``end`` defaults to now.

    Raises:
        InvalidPeriod: unknown timezone, or ``start`` is not before ``end``.
    """
    tz = load_timezone(tz_name)
    current = (now or _utcnow)()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)

    resolved_start = _to_utc(start, tz) if start is not None else start_of_month(current, tz)
    resolved_end = _to_utc(end, tz) if end is not None else current.astimezone(timezone.utc)

    if resolved_start >= resolved_end:
        raise InvalidPeriod(
            f"Billing period start ({resolved_start.isoformat()}) must be before "
            f"end ({resolved_end.isoformat()})"
        )
    return BillingPeriod(start=resolved_start, end=resolved_end)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """Clinic-local calendar date of an instant (naive instants are UTC)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz).date()


def local_date_bounds(period: BillingPeriod, tz_name: str) -> tuple[date, date]:
    """Clinic-local dates overlapping the period, as ``[first, end_exclusive)``.

    Time entries carry a calendar date rather than an instant, so a date is
    in the period when any part of that local day falls inside ``[from, to)``.
    """
    tz = load_timezone(tz_name)
    first = local_date(period.start, tz)
    local_end = period.end.astimezone(tz)
    end_exclusive = local_end.date()
    if local_end.time() != time(0, 0):
        end_exclusive += timedelta(days=1)
    return first, end_exclusive
