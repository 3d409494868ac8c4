from datetime import datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize to an aware UTC datetime. Naive values are taken as UTC
    (SQLite drops tzinfo on the way back).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def end_of_week(moment: datetime) -> datetime:
    """
    Sunday 23:59:59.999 of the week containing `moment`, in the timezone of
    `moment` (UTC when naive).
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    days_until_sunday = 6 - moment.weekday()
    sunday = moment.date() + timedelta(days=days_until_sunday)
    return datetime.combine(sunday, time(23, 59, 59, 999000), tzinfo=moment.tzinfo)
