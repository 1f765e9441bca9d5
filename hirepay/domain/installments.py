"""Installment plan generation for hire-purchase repayment"""

from datetime import date, timedelta
from typing import List
from hirepay.domain.models import Installment, PaymentFrequency
from hirepay.utils.date_utils import add_months, utcnow


def due_date_for(start_date: date, frequency: PaymentFrequency, index: int) -> date:
    """Due date of the index-th installment (0-based) counted from start_date"""
    if frequency == PaymentFrequency.DAILY:
        return start_date + timedelta(days=index)
    if frequency == PaymentFrequency.WEEKLY:
        return start_date + timedelta(weeks=index)
    return add_months(start_date, index)


def generate_installment_plan(
    finance_pesewas: int,
    num_installments: int,
    frequency: PaymentFrequency = PaymentFrequency.MONTHLY,
    start_date: date | None = None,
) -> List[Installment]:
    """
    Split the financed amount of a contract into equal installments.

    Requirements:
    - Equal installments spaced by the contract's payment frequency
    - Last installment absorbs rounding remainder (≤ num_installments-1 pesewas drift)
    - Installments are numbered from 1 in due date order

    Args:
        finance_pesewas: Total price minus deposit
        num_installments: Number of payments
        frequency: DAILY, WEEKLY or MONTHLY spacing
        start_date: First due date (default: one period from today)

    Returns:
        List of Installment objects with sequence numbers, due dates and amounts

    Example:
        GHS 1,000.03 over 4 → [250.00, 250.00, 250.00, 250.03]
        100003 pesewas / 4 = 25000 base, remainder 3
        Last installment: 25000 + 3 = 25003
    """
    if finance_pesewas <= 0 or num_installments <= 0:
        return []

    if start_date is None:
        start_date = due_date_for(utcnow().date(), frequency, 1)

    base_amount = finance_pesewas // num_installments
    remainder = finance_pesewas % num_installments

    installments = []
    for i in range(num_installments):
        amount = base_amount + (remainder if i == num_installments - 1 else 0)
        installments.append(
            Installment(
                installment_no=i + 1,
                due_date=due_date_for(start_date, frequency, i),
                amount_pesewas=amount,
            )
        )

    return installments
