"""Unit tests for date utilities"""

import pytest
from datetime import date, datetime
from hirepay.utils.date_utils import add_months, parse_provider_datetime, utcnow


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (date(2024, 1, 15), 1, date(2024, 2, 15)),
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, date(2023, 2, 28)),
        (date(2024, 11, 30), 3, date(2025, 2, 28)),
        (date(2024, 5, 10), 0, date(2024, 5, 10)),
    ],
)
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected


def test_parse_provider_datetime_converts_to_naive_utc():
    assert parse_provider_datetime("2024-03-01T12:30:00Z") == datetime(2024, 3, 1, 12, 30)
    assert parse_provider_datetime("2024-03-01T14:30:00+02:00") == datetime(2024, 3, 1, 12, 30)
    assert parse_provider_datetime("2024-03-01T12:30:00") == datetime(2024, 3, 1, 12, 30)


@pytest.mark.parametrize("value", [None, "", "yesterday"])
def test_parse_provider_datetime_unreadable(value):
    assert parse_provider_datetime(value) is None


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
