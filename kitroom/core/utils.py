import datetime
import logging

logger = logging.getLogger(__name__)

ONE_DAY = datetime.timedelta(days=1)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)

def today() -> datetime.date:
    return datetime.date.today()

def as_date(value) -> datetime.date:
    """Accepts a date, a datetime or an ISO `YYYY-MM-DD` string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])

def skip_sunday(day: datetime.date) -> datetime.date:
    """Nothing is returned on a Sunday; such due dates slide to Monday."""
    if day.weekday() == 6:
        return day + ONE_DAY
    return day

def span_days(start: datetime.date, end: datetime.date) -> int:
    """Inclusive day count, so a same-day loan lasts 1 day."""
    return (end - start).days + 1

def late_days(due_date, returned_on=None) -> int:
    returned_on = as_date(returned_on or today())
    return max(0, (returned_on - as_date(due_date)).days)
