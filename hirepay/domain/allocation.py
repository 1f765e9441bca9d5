"""Ledger allocator - applies an incoming payment to penalties then installments"""

from typing import Iterable, List
from hirepay.domain.models import (
    AllocationResult,
    ContractState,
    ContractStatus,
    InstallmentApplication,
    InstallmentState,
    InstallmentStatus,
    PenaltyApplication,
    PenaltyState,
)


def allocate(
    contract: ContractState,
    penalties: Iterable[PenaltyState],
    installments: Iterable[InstallmentState],
    amount_pesewas: int,
) -> AllocationResult:
    """
    Build the allocation plan for one successful payment.

    Rules:
    - Unpaid penalties first, in the order given (creation order). A penalty
      is paid in full or skipped; it is never partially paid.
    - Then installments by ascending installment_no, oldest debt first.
      The last one reached may be left PARTIAL.
    - Contract total_paid grows by the full incoming amount, outstanding
      balance shrinks by it (floored at zero), and the contract is COMPLETED
      exactly when the outstanding balance reaches zero.
    - Funds left after every penalty and installment is satisfied are
      reported as unapplied_pesewas for the caller to persist.

    Inputs are not mutated.

    Example:
        two installments of 500, payment of 700
        -> #1 PAID (500), #2 PARTIAL (200), outstanding - 700
    """
    if amount_pesewas <= 0:
        raise ValueError(f"Allocation amount must be positive, got {amount_pesewas}")

    remaining = amount_pesewas

    penalty_applications: List[PenaltyApplication] = []
    for penalty in penalties:
        if penalty.is_paid:
            continue
        # Short funds skip the penalty; later (smaller) penalties may still fit
        if remaining >= penalty.amount_pesewas:
            penalty_applications.append(PenaltyApplication(penalty.id, penalty.amount_pesewas))
            remaining -= penalty.amount_pesewas

    installment_applications: List[InstallmentApplication] = []
    open_installments = sorted(
        (i for i in installments if i.paid_pesewas < i.amount_pesewas),
        key=lambda i: i.installment_no,
    )
    for installment in open_installments:
        if remaining <= 0:
            break

        due = installment.due_pesewas
        if remaining >= due:
            installment_applications.append(
                InstallmentApplication(
                    installment_id=installment.id,
                    installment_no=installment.installment_no,
                    applied_pesewas=due,
                    paid_pesewas=installment.amount_pesewas,
                    status=InstallmentStatus.PAID,
                )
            )
            remaining -= due
        else:
            installment_applications.append(
                InstallmentApplication(
                    installment_id=installment.id,
                    installment_no=installment.installment_no,
                    applied_pesewas=remaining,
                    paid_pesewas=installment.paid_pesewas + remaining,
                    status=InstallmentStatus.PARTIAL,
                )
            )
            remaining = 0

    total_paid = contract.total_paid_pesewas + amount_pesewas
    outstanding = max(0, contract.outstanding_balance_pesewas - amount_pesewas)
    status = ContractStatus.COMPLETED if outstanding == 0 else contract.status

    return AllocationResult(
        incoming_pesewas=amount_pesewas,
        penalties=penalty_applications,
        installments=installment_applications,
        unapplied_pesewas=remaining,
        total_paid_pesewas=total_paid,
        outstanding_balance_pesewas=outstanding,
        contract_status=status,
    )
