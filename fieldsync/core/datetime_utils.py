"""
DateTime helpers shared by the outbox and the notification feed.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | str | None) -> datetime | None:
    """
    Normalize a datetime or ISO string to an aware UTC datetime.

    Naive values are assumed to be UTC. Unparseable strings yield None.
    """
    if dt is None or dt == "":
        return None
    if isinstance(dt, str):
        try:
            dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """ISO-8601 in UTC with a trailing Z, the format the logistics API expects."""
    return as_utc(dt).isoformat().replace("+00:00", "Z")
