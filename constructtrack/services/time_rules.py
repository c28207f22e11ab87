"""
Time rules service.
Hour arithmetic for check-out, and local-date helpers for the tenant timezone.
"""
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple
import pytz
from ..config import settings
from ..errors import ValidationError


TWO_PLACES = Decimal("0.01")


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to timezone-aware UTC.

    Naive values (SQLite hands them back that way) are taken to be UTC already.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def round_hours(value) -> Decimal:
    """Round to two decimals, half away from zero."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_worked_hours(
    check_in: datetime,
    check_out: datetime,
    threshold_hours: Optional[float] = None,
) -> Tuple[Decimal, Decimal]:
    """
    Compute total and overtime hours for a closed shift.

    Args:
        check_in: Check-in instant
        check_out: Check-out instant
        threshold_hours: Daily threshold before overtime (default from settings)

    Returns:
        (total_hours, overtime_hours), both rounded to 2 decimals.
        overtime_hours = max(0, total_hours - threshold)
    """
    if threshold_hours is None:
        threshold_hours = settings.overtime_threshold_hours
    elapsed = (as_utc(check_out) - as_utc(check_in)).total_seconds()
    total = round_hours(Decimal(str(elapsed)) / Decimal(3600))
    overtime = total - round_hours(threshold_hours)
    if overtime < 0:
        overtime = Decimal("0.00")
    return total, overtime.quantize(TWO_PLACES)


def local_date(dt: datetime, timezone_str: Optional[str] = None) -> date:
    """
    Calendar date of an instant in the given timezone.

    Args:
        dt: Instant (aware, or naive UTC)
        timezone_str: Timezone name (default TZ_DEFAULT)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return as_utc(dt).astimezone(tz).date()


def local_day_bounds(start: date, end: date, timezone_str: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    UTC instants covering local midnight of ``start`` through the last
    microsecond of ``end``, inclusive.
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    start_local = tz.localize(datetime.combine(start, time.min))
    end_local = tz.localize(datetime.combine(end, time.max))
    return start_local.astimezone(pytz.UTC), end_local.astimezone(pytz.UTC)


def local_today_bounds(timezone_str: Optional[str] = None) -> Tuple[datetime, datetime]:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    today = datetime.now(tz).date()
    return local_day_bounds(today, today, timezone_str)


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD (or a full ISO datetime) into a date."""
    try:
        return date.fromisoformat((value or "").strip()[:10])
    except ValueError:
        raise ValidationError("Invalid date format")
