"""Unit tests for overdue detection and late fees"""

import pytest
from datetime import date
from types import SimpleNamespace
from hirepay.domain.penalties import assess_overdue, is_past_grace, penalty_amount

TODAY = date(2024, 6, 15)


def _installment(no, due, amount=50000, paid=0, status="PENDING"):
    return SimpleNamespace(
        id=f"i{no}", installment_no=no, due_date=due, amount_pesewas=amount, paid_pesewas=paid, status=status
    )


@pytest.mark.parametrize(
    "unpaid, pct, expected",
    [(50000, 5, 2500), (333, 5, 17), (330, 5, 17), (329, 5, 16), (50000, 0, 0), (0, 5, 0), (1000, 2.5, 25)],
)
def test_penalty_amount(unpaid, pct, expected):
    assert penalty_amount(unpaid, pct) == expected


def test_grace_period_boundary():
    assert not is_past_grace(date(2024, 6, 10), TODAY, 5)
    assert is_past_grace(date(2024, 6, 9), TODAY, 5)
    assert not is_past_grace(TODAY, TODAY, 0)


def test_assess_overdue_partial_uses_unpaid_remainder():
    installments = [_installment(1, date(2024, 6, 1), paid=20000, status="PARTIAL")]

    [assessment] = assess_overdue(installments, TODAY, 0, 10)

    assert assessment.unpaid_pesewas == 30000
    assert assessment.penalty_pesewas == 3000


def test_assess_overdue_skips_paid_overdue_and_in_grace():
    installments = [
        _installment(3, date(2024, 6, 1)),
        _installment(1, date(2024, 4, 1), paid=50000, status="PAID"),
        _installment(2, date(2024, 5, 1), status="OVERDUE"),
        _installment(4, date(2024, 6, 12)),
    ]

    assessments = assess_overdue(installments, TODAY, 3, 5)

    assert [a.installment_no for a in assessments] == [3]


def test_assess_overdue_zero_percentage_still_reported():
    [assessment] = assess_overdue([_installment(1, date(2024, 1, 1))], TODAY, 0, 0)

    assert assessment.penalty_pesewas == 0
