from datetime import datetime, timezone


def now_utc():
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_utc_month(dt: datetime):
    return as_utc(dt).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_next_utc_month(dt: datetime):
    start = start_of_utc_month(dt)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def same_utc_month(a: datetime, b: datetime) -> bool:
    a, b = as_utc(a), as_utc(b)
    return (a.year, a.month) == (b.year, b.month)
