"""UTC-everywhere time handling."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere, including token iat/exp.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime | None) -> datetime | None:
    """
    Normalize a timestamp read from the database to UTC.

    None passes through (e.g. deleted_at). Raises ValueError if the
    datetime is naive: every column is timestamptz.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)
