from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from .config import settings


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now() -> datetime:
    """Wall-clock time in the company timezone, without tzinfo."""
    return datetime.now(ZoneInfo(settings.APP_TIMEZONE)).replace(tzinfo=None)


def today() -> date:
    return now().date()
