"""Clock helpers.

Database timestamps are naive UTC. Business-facing dates (booking days,
slot start times) are evaluated in the business timezone.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sachetan.core.config import settings

BUSINESS_TZ = ZoneInfo(settings.BUSINESS_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_now() -> datetime:
    """Naive wall-clock time in the business timezone."""
    return datetime.now(BUSINESS_TZ).replace(tzinfo=None)
