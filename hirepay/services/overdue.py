"""Overdue sweep - flags late installments and charges late fees"""

import logging
from dataclasses import dataclass
from datetime import date
from sqlalchemy.orm import Session
from hirepay.domain.models import InstallmentStatus
from hirepay.domain.penalties import assess_overdue
from hirepay.infrastructure.database.repositories import ContractRepository
from hirepay.services import audit
from hirepay.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class OverdueSweepResult:
    contracts_checked: int = 0
    installments_marked: int = 0
    penalties_created: int = 0
    penalty_total_pesewas: int = 0


def run_overdue_sweep(db: Session, today: date | None = None) -> OverdueSweepResult:
    """
    Mark installments past their grace period OVERDUE and add one penalty each.

    An installment is penalised at most once, even if a later partial
    payment moves it back to PARTIAL. Each contract is committed on its own.
    """
    today = today or utcnow().date()
    contracts = ContractRepository(db)
    result = OverdueSweepResult()

    for contract in contracts.get_active_contracts():
        result.contracts_checked += 1
        candidates = contracts.get_open_installments_due_before(contract.id, today)
        assessments = assess_overdue(
            candidates, today, contract.grace_period_days, contract.penalty_percentage
        )
        if not assessments:
            continue

        already_penalised = contracts.get_penalised_installment_ids(contract.id)
        installments = {i.id: i for i in candidates}
        created = []
        for assessment in assessments:
            installments[assessment.installment_id].status = InstallmentStatus.OVERDUE.value
            result.installments_marked += 1

            if assessment.penalty_pesewas <= 0 or assessment.installment_id in already_penalised:
                continue
            contracts.add_penalty(
                contract.id,
                assessment.penalty_pesewas,
                f"Late payment penalty for installment #{assessment.installment_no}",
                installment_id=assessment.installment_id,
            )
            created.append({"installment_no": assessment.installment_no, "amount_pesewas": assessment.penalty_pesewas})
            result.penalties_created += 1
            result.penalty_total_pesewas += assessment.penalty_pesewas

        contract_id = contract.id
        db.commit()
        audit.record_audit(
            db,
            audit.OVERDUE_SWEEP,
            "HirePurchaseContract",
            contract_id,
            new_values={
                "overdue_installments": [a.installment_no for a in assessments],
                "penalties": created,
            },
        )

    logger.info(
        "Overdue sweep finished",
        extra={
            "contracts_checked": result.contracts_checked,
            "installments_marked": result.installments_marked,
            "penalties_created": result.penalties_created,
        },
    )
    return result
