"""Date and time helpers. Business days and clock times are Asia/Dhaka (UTC+06:00)."""
import calendar
import sys
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

BUSINESS_TZ = timezone(timedelta(hours=6), 'Asia/Dhaka')

# Returned by calculate_time_difference when an order has no delivery date
MAX_TIME_DIFFERENCE = sys.maxsize

_ISO_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def now_local() -> datetime:
    return datetime.now(BUSINESS_TZ)


def today_local() -> date:
    return now_local().date()


def to_utc_iso(dt: datetime) -> str:
    """Serialize an aware datetime as a sortable UTC timestamp string."""
    return dt.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def utc_now_iso() -> str:
    return to_utc_iso(datetime.now(timezone.utc))


def parse_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``; raises ValueError for anything else."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")
    return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()


def parse_time(value: str) -> Tuple[int, int]:
    """Parse ``HH:MM`` into (hour, minute); raises ValueError on bad input."""
    parts = (value or '').strip().split(':')
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time: {value!r}")
    return hour, minute


def in_date_range(value: Optional[str], date_from: Optional[str], date_to: Optional[str]) -> bool:
    """Range check on ``YYYY-MM-DD`` strings. The upper bound is inclusive."""
    if not date_from and not date_to:
        return True
    if not value:
        return False
    if date_from and value < date_from:
        return False
    # '~' sorts after every digit and letter, so '2024-05-01 xyz' <= '2024-05-01~'
    if date_to and value > date_to + '~':
        return False
    return True


def day_bounds_utc(date_from: Optional[str], date_to: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """UTC timestamp bounds covering the Dhaka days *date_from*..*date_to*.

    The upper bound is exclusive (midnight after *date_to*).
    """
    lower = upper = None
    if date_from:
        lower = to_utc_iso(datetime.combine(parse_date(date_from), time(0, 0), tzinfo=BUSINESS_TZ))
    if date_to:
        next_day = parse_date(date_to) + timedelta(days=1)
        upper = to_utc_iso(datetime.combine(next_day, time(0, 0), tzinfo=BUSINESS_TZ))
    return lower, upper


def in_timestamp_range(value: Optional[str], date_from: Optional[str], date_to: Optional[str]) -> bool:
    """True if UTC timestamp *value* falls on one of the Dhaka days in the range."""
    if not date_from and not date_to:
        return True
    if not value:
        return False
    lower, upper = day_bounds_utc(date_from, date_to)
    if lower and value < lower:
        return False
    if upper and value >= upper:
        return False
    return True


def calculate_time_difference(
    delivery_date: Optional[str],
    delivery_bd_time: Optional[str],
    now: Optional[datetime] = None,
) -> int:
    """Minutes from *now* until the delivery deadline (negative once overdue).

    The deadline is *delivery_date* at *delivery_bd_time* Dhaka time,
    23:59 when no time is set.
    """
    if not delivery_date:
        return MAX_TIME_DIFFERENCE
    try:
        day = parse_date(delivery_date)
    except ValueError:
        return MAX_TIME_DIFFERENCE
    try:
        hour, minute = parse_time(delivery_bd_time or '23:59')
    except ValueError:
        hour, minute = 23, 59
    deadline = datetime.combine(day, time(hour, minute), tzinfo=BUSINESS_TZ)
    now = now or now_local()
    return int((deadline - now).total_seconds() // 60)


def get_dates_in_range(date_from: str, date_to: str) -> List[str]:
    start, end = parse_date(date_from), parse_date(date_to)
    return [(start + timedelta(days=i)).isoformat() for i in range((end - start).days + 1)]


def js_weekday(day: date) -> int:
    """Weekday number used for weekend configuration: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def last_months(count: int, today: Optional[date] = None) -> List[Tuple[int, int]]:
    """The *count* calendar months up to and including this one, oldest first."""
    today = today or today_local()
    year, month = today.year, today.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


def month_label(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


# ── Formatting ───────────────────────────────────────────────

def format_date(value: Optional[str]) -> str:
    """``2024-03-07`` → ``07-03-2024``; empty or unparsable input gives ''."""
    if not value:
        return ''
    try:
        return parse_date(value).strftime('%d-%m-%Y')
    except ValueError:
        return ''


def format_time(value: Optional[str]) -> str:
    """``14:05`` → ``02:05 PM``."""
    if not value:
        return ''
    try:
        hour, minute = parse_time(value)
    except ValueError:
        return ''
    return time(hour, minute).strftime('%I:%M %p')


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f"{n}{suffix}"


def format_long_date(value: Optional[str]) -> str:
    """``2025-01-05`` → ``5th Jan. 2025``."""
    if not value:
        return ''
    try:
        d = parse_date(value)
    except ValueError:
        return ''
    return f"{_ordinal(d.day)} {d.strftime('%b')}. {d.year}"
