"""Unit tests for installment plan generation"""

import pytest
from datetime import date, timedelta
from hirepay.domain.installments import due_date_for, generate_installment_plan
from hirepay.domain.models import PaymentFrequency
from hirepay.utils.date_utils import utcnow


def test_generate_installment_plan_equal_split():
    """Evenly divisible finance amount"""
    installments = generate_installment_plan(100000, 4)

    assert len(installments) == 4
    assert all(inst.amount_pesewas == 25000 for inst in installments)
    assert [inst.installment_no for inst in installments] == [1, 2, 3, 4]


def test_generate_installment_plan_rounding():
    """Last installment absorbs the remainder"""
    installments = generate_installment_plan(100003, 4)

    assert [inst.amount_pesewas for inst in installments] == [25000, 25000, 25000, 25003]
    assert sum(inst.amount_pesewas for inst in installments) == 100003


def test_generate_installment_plan_monthly_dates():
    start = date(2024, 1, 31)
    installments = generate_installment_plan(90000, 3, PaymentFrequency.MONTHLY, start_date=start)

    assert [inst.due_date for inst in installments] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]


@pytest.mark.parametrize(
    "frequency, step",
    [(PaymentFrequency.DAILY, timedelta(days=1)), (PaymentFrequency.WEEKLY, timedelta(weeks=1))],
)
def test_generate_installment_plan_short_frequencies(frequency, step):
    start = date(2024, 5, 1)
    installments = generate_installment_plan(3000, 3, frequency, start_date=start)

    assert [inst.due_date for inst in installments] == [start, start + step, start + 2 * step]


def test_default_start_is_one_period_out():
    installments = generate_installment_plan(7000, 7, PaymentFrequency.DAILY)

    assert installments[0].due_date == utcnow().date() + timedelta(days=1)


def test_due_date_for_month_end_clamp():
    assert due_date_for(date(2023, 1, 31), PaymentFrequency.MONTHLY, 1) == date(2023, 2, 28)
    assert due_date_for(date(2023, 11, 15), PaymentFrequency.MONTHLY, 3) == date(2024, 2, 15)


@pytest.mark.parametrize("finance, count", [(0, 4), (-100, 4), (10000, 0)])
def test_generate_installment_plan_empty(finance, count):
    assert generate_installment_plan(finance, count) == []
