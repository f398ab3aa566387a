from datetime import datetime, date, timedelta, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def as_utc_naive(value: datetime | None) -> datetime | None:
    """Normalize an aware or naive datetime to naive UTC.

    Naive inputs are taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def isoformat_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def start_of_day(d: date) -> datetime:
    return datetime(d.year, d.month, d.day)


def start_of_next_day(d: date) -> datetime:
    return start_of_day(d) + timedelta(days=1)
