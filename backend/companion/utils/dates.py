# companion/utils/dates.py
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime, the shape MongoDB hands back.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalizes aware datetimes to naive UTC so they compare with stored values.
    Naive input is assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def safe_bson_date(date):
    """
    Returns the input if it is a datetime, otherwise None.
    """
    if isinstance(date, datetime):
        return date
    return None
