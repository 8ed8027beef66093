from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_millis(value: datetime) -> int:
    """Milliseconds since the epoch, the stored form of every timestamp"""
    return int(as_utc(value).timestamp() * 1000)
