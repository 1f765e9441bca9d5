"""Integration tests for the overdue sweep"""

from datetime import date, datetime
from unittest.mock import patch
from hirepay.infrastructure.database.models import Penalty
from hirepay.services.overdue import run_overdue_sweep


def test_sweep_uses_utc_calendar_day(db, customer, make_contract):
    """The sweep's day is the UTC day, whatever the server's local time zone"""
    contract = make_contract(customer, first_due=date(2024, 3, 1))

    with patch("hirepay.services.overdue.utcnow", return_value=datetime(2024, 3, 1, 23, 30)):
        assert run_overdue_sweep(db).installments_marked == 0

    with patch("hirepay.services.overdue.utcnow", return_value=datetime(2024, 3, 2, 0, 30)):
        result = run_overdue_sweep(db)

    assert result.installments_marked == 1
    assert result.penalty_total_pesewas == 2500
    db.expire_all()
    assert [i.status for i in contract.installments] == ["OVERDUE", "PENDING"]


def test_installment_penalised_once(db, customer, make_contract):
    make_contract(customer, first_due=date(2024, 3, 1))

    first = run_overdue_sweep(db, today=date(2024, 3, 5))
    second = run_overdue_sweep(db, today=date(2024, 3, 6))

    assert first.penalties_created == 1
    assert second.penalties_created == 0
    assert db.query(Penalty).count() == 1
