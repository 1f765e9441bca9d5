"""Retry policy - when a failed payment may be charged again"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from hirepay.domain.models import PaymentStatus
from hirepay.utils.date_utils import utcnow

MAX_RETRY_ATTEMPTS_RANGE = (0, 10)
RETRY_INTERVAL_HOURS_RANGE = (1, 168)
RETRY_SCHEDULE_DAY_RANGE = (0, 30)

DEFAULT_RETRY_SCHEDULE = "1,3,7"


def parse_retry_schedule(schedule: str) -> List[int]:
    """
    Parse a comma-separated list of day offsets, e.g. "1,3,7".

    Raises:
        ValueError: On non-numeric entries or offsets outside 0-30 days
    """
    if schedule is None or not schedule.strip():
        return []

    days = []
    for part in schedule.split(","):
        part = part.strip()
        try:
            value = int(part)
        except ValueError:
            raise ValueError(f"Invalid retry schedule entry: {part!r}") from None
        days.append(value)

    validate_retry_schedule(days)
    return days


def validate_retry_schedule(days: Sequence[int]) -> None:
    low, high = RETRY_SCHEDULE_DAY_RANGE
    for value in days:
        if value < low or value > high:
            raise ValueError(f"Retry schedule entries must be between {low} and {high} days, got {value}")


def format_retry_schedule(days: Sequence[int]) -> str:
    return ",".join(str(d) for d in days)


def next_retry_date(
    retry_count: int,
    schedule: Sequence[int],
    interval_hours: int,
    now: datetime | None = None,
) -> Optional[datetime]:
    """
    Next automatic retry time, or None when the schedule is exhausted.

    The interval hours are added on top of the day offset:
        retry_count=2, schedule=[1, 3, 7], interval_hours=24
        -> now + 7 days + 24 hours
    """
    if retry_count >= len(schedule):
        return None

    now = now or utcnow()
    return now + timedelta(days=schedule[retry_count], hours=interval_hours)


def is_eligible_for_retry(payment, settings, now: datetime | None = None) -> bool:
    """
    FAILED, auto retry on, attempts left and the retry time has come.

    `payment` needs status, auto_retry_enabled, retry_count and next_retry_at;
    `settings` needs max_retry_attempts.
    """
    now = now or utcnow()
    return (
        payment.status == PaymentStatus.FAILED.value
        and bool(payment.auto_retry_enabled)
        and payment.retry_count < settings.max_retry_attempts
        and payment.next_retry_at is not None
        and payment.next_retry_at <= now
    )


def retries_exhausted(retry_count: int, max_retry_attempts: int) -> bool:
    return retry_count >= max_retry_attempts


def retry_reference(transaction_ref: str, attempt_number: int) -> str:
    """Reference used for the n-th retry of a payment"""
    return f"{transaction_ref}-retry-{attempt_number}"


def next_retry_from_settings(settings, retry_count: int, now: datetime | None = None) -> Optional[datetime]:
    """
    next_retry_date driven by the RetrySettings row.

    None once retry_count has reached max_retry_attempts, even when the
    schedule lists more offsets.
    """
    if retries_exhausted(retry_count, settings.max_retry_attempts):
        return None
    return next_retry_date(
        retry_count,
        parse_retry_schedule(settings.retry_schedule),
        settings.retry_interval_hours,
        now,
    )


def validate_settings_update(changes) -> None:
    """
    Check an admin settings update against the allowed ranges.

    Raises:
        ValueError: Attempts outside 0-10, interval outside 1-168 hours,
            or a malformed schedule
    """
    if changes.get("max_retry_attempts") is not None:
        low, high = MAX_RETRY_ATTEMPTS_RANGE
        if not low <= changes["max_retry_attempts"] <= high:
            raise ValueError(f"Max retry attempts must be between {low} and {high}")

    if changes.get("retry_interval_hours") is not None:
        low, high = RETRY_INTERVAL_HOURS_RANGE
        if not low <= changes["retry_interval_hours"] <= high:
            raise ValueError(f"Retry interval must be between {low} and {high} hours")

    if changes.get("retry_schedule") is not None and not parse_retry_schedule(changes["retry_schedule"]):
        raise ValueError("Retry schedule must list at least one day offset")
