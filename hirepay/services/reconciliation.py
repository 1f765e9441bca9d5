"""Ledger reconciliation report"""

from dataclasses import dataclass
from typing import List
from sqlalchemy.orm import Session
from hirepay.infrastructure.database.repositories import ContractRepository, PaymentTransactionRepository


@dataclass
class ContractDiscrepancy:
    contract_id: str
    contract_number: str
    deposit_pesewas: int
    successful_payments_pesewas: int
    expected_total_paid_pesewas: int
    recorded_total_paid_pesewas: int
    expected_outstanding_pesewas: int
    recorded_outstanding_pesewas: int

    @property
    def difference_pesewas(self) -> int:
        return self.recorded_total_paid_pesewas - self.expected_total_paid_pesewas


def find_discrepancies(db: Session) -> List[ContractDiscrepancy]:
    """
    Contracts whose totals disagree with their successful payments.

    Expected total paid = deposit + sum of SUCCESS payment amounts;
    expected outstanding = max(0, total price - expected total paid).
    Read-only.
    """
    sums = PaymentTransactionRepository(db).successful_sums_by_contract()
    discrepancies = []
    for contract in ContractRepository(db).get_all_contracts():
        paid = sums.get(contract.id, 0)
        expected_total = contract.deposit_pesewas + paid
        expected_outstanding = max(0, contract.total_price_pesewas - expected_total)
        if (
            expected_total != contract.total_paid_pesewas
            or expected_outstanding != contract.outstanding_balance_pesewas
        ):
            discrepancies.append(
                ContractDiscrepancy(
                    contract_id=contract.id,
                    contract_number=contract.contract_number,
                    deposit_pesewas=contract.deposit_pesewas,
                    successful_payments_pesewas=paid,
                    expected_total_paid_pesewas=expected_total,
                    recorded_total_paid_pesewas=contract.total_paid_pesewas,
                    expected_outstanding_pesewas=expected_outstanding,
                    recorded_outstanding_pesewas=contract.outstanding_balance_pesewas,
                )
            )
    return discrepancies
