"""Overdue detection and late-fee calculation"""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List
from hirepay.domain.models import InstallmentStatus, OverdueAssessment

OPEN_STATUSES = (InstallmentStatus.PENDING.value, InstallmentStatus.PARTIAL.value)


def penalty_amount(unpaid_pesewas: int, penalty_percentage) -> int:
    """Percentage of the unpaid amount, rounded half up to the pesewa"""
    if unpaid_pesewas <= 0:
        return 0
    amount = Decimal(unpaid_pesewas) * Decimal(str(penalty_percentage)) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_past_grace(due_date: date, today: date, grace_period_days: int) -> bool:
    return due_date + timedelta(days=grace_period_days) < today


def assess_overdue(
    installments: Iterable,
    today: date,
    grace_period_days: int,
    penalty_percentage,
) -> List[OverdueAssessment]:
    """
    Installments that become overdue today and the penalty each attracts.

    Only PENDING and PARTIAL installments whose due date plus the grace
    period lies before `today` qualify; installments already OVERDUE were
    penalised by an earlier sweep and are skipped. A zero penalty (0% or
    nothing unpaid) is reported with penalty_pesewas=0 and is not charged.

    `installments` needs id, installment_no, due_date, amount_pesewas,
    paid_pesewas and status (ORM rows qualify).
    """
    assessments = []
    for inst in sorted(installments, key=lambda i: i.installment_no):
        status = getattr(inst.status, "value", inst.status)
        if status not in OPEN_STATUSES:
            continue
        if not is_past_grace(inst.due_date, today, grace_period_days):
            continue

        unpaid = inst.amount_pesewas - inst.paid_pesewas
        assessments.append(
            OverdueAssessment(
                installment_id=inst.id,
                installment_no=inst.installment_no,
                unpaid_pesewas=unpaid,
                penalty_pesewas=penalty_amount(unpaid, penalty_percentage),
            )
        )
    return assessments
