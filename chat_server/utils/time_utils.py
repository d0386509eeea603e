from datetime import datetime, timezone, timedelta


def now_utc() -> datetime:
    """Current UTC time as a naive datetime, matching what pymongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_ago(seconds: int, now: datetime = None) -> datetime:
    return (now or now_utc()) - timedelta(seconds=seconds)


def to_iso(dt):
    if dt is None:
        return None
    if isinstance(dt, datetime):
        return dt.isoformat()
    return str(dt)
