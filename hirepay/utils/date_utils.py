"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(from_date: date, months: int) -> date:
    """Same day N months later, clamped to the end of shorter months"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return from_date.replace(year=year, month=month, day=day)


def parse_provider_datetime(value: str | None) -> Optional[datetime]:
    """ISO-8601 timestamp from a provider payload as naive UTC; None when absent or unparseable"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
