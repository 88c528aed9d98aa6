"""
Local calendar day helpers.

Every "day" in WorkLog is a day in one reference zone. Timestamps are stored
in UTC; these helpers convert between the two. The zone is always passed in
by the caller.
"""

from datetime import datetime, date, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import InvalidInterval


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"Invalid timezone '{name}'. Use IANA timezone identifiers."
        )


def parse_timestamp(value, field: str, tz: ZoneInfo) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    A trailing 'Z' is accepted. Naive timestamps are read as wall-clock time
    in the reference zone.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise InvalidInterval(f"{field} is required (ISO format)", field=field)
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidInterval(
                f"{field} is not a valid ISO timestamp: {value!r}", field=field
            )
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """UTC ISO string with second precision; sorts lexicographically."""
    return dt.astimezone(timezone.utc).isoformat(timespec='seconds')


def from_iso(text):
    if text is None:
        return None
    return datetime.fromisoformat(text)


def parse_day(value, field: str) -> date:
    if not value:
        raise InvalidInterval(f"{field} is required (YYYY-MM-DD)", field=field)
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise InvalidInterval(f"{field} must use the format YYYY-MM-DD", field=field)


def parse_clock(value, field: str) -> time:
    """Parse HH:MM or H:MM."""
    try:
        return datetime.strptime(value.strip(), '%H:%M').time()
    except (AttributeError, ValueError):
        raise InvalidInterval(f"{field} must use the format HH:MM", field=field)


def local_day(ts: datetime, tz: ZoneInfo) -> date:
    """The calendar day of `ts` in the reference zone."""
    return ts.astimezone(tz).date()


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """
    Return the [start, end) of a local day as UTC datetimes.

    Days around DST switches are 23 or 25 hours long; both bounds are taken
    from local midnights so that is handled.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_instant(day: date, clock: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, clock, tzinfo=tz).astimezone(timezone.utc)
