"""Settlement - moves a payment to SUCCESS and applies it to the contract ledger"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from hirepay.domain.allocation import allocate
from hirepay.domain.models import (
    AllocationResult,
    ContractState,
    ContractStatus,
    InstallmentState,
    InstallmentStatus,
    PaymentStatus,
    PenaltyState,
)
from hirepay.infrastructure.database.models import HirePurchaseContract, Installment, Penalty
from hirepay.infrastructure.database.repositories import ContractRepository, PaymentTransactionRepository
from hirepay.infrastructure.observability.logging import log_payment_event
from hirepay.infrastructure.observability.metrics import settlement_counter, unapplied_funds_counter
from hirepay.services import audit
from hirepay.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    payment_id: str
    settled: bool
    already_settled: bool = False
    allocation: Optional[AllocationResult] = None


def _write_allocation(
    contract: HirePurchaseContract,
    penalties: list[Penalty],
    installments: list[Installment],
    result: AllocationResult,
    now: datetime,
) -> None:
    penalties_by_id = {p.id: p for p in penalties}
    for application in result.penalties:
        penalty = penalties_by_id[application.penalty_id]
        penalty.is_paid = True
        penalty.paid_at = now

    installments_by_id = {i.id: i for i in installments}
    for application in result.installments:
        installment = installments_by_id[application.installment_id]
        installment.paid_pesewas = application.paid_pesewas
        installment.status = application.status.value
        if application.status == InstallmentStatus.PAID:
            installment.paid_at = now

    contract.total_paid_pesewas = result.total_paid_pesewas
    contract.outstanding_balance_pesewas = result.outstanding_balance_pesewas
    contract.status = result.contract_status.value
    if result.completed:
        contract.ownership_transferred = True


def apply_successful_payment(
    db: Session,
    payment_id: str,
    external_ref: str | None = None,
    payment_date: datetime | None = None,
    metadata: Dict[str, Any] | None = None,
    source: str = "callback",
) -> SettlementResult:
    """
    Settle a payment exactly once.

    Flow (one unit of work, committed once):
    1. Compare-and-swap the transaction to SUCCESS (from PENDING or FAILED)
    2. Lock the contract, load unpaid penalties and installments
    3. Run the allocator and write its plan back
    4. Record unapplied funds on the transaction

    A lost compare-and-swap means another worker (duplicate webhook, status
    poll, retry reconciliation) settled first: the session is rolled back
    and already_settled is reported. Any error rolls the whole unit back.

    Args:
        payment_id: Transaction to settle
        external_ref: Provider transaction id
        payment_date: Provider payment time (naive UTC)
        metadata: Keys merged into the transaction metadata
        source: callback | status_poll | retry_reconcile | manual

    Returns:
        SettlementResult with the allocation when this call settled the payment
    """
    payments = PaymentTransactionRepository(db)
    contracts = ContractRepository(db)
    now = utcnow()

    try:
        payment = payments.get_by_id(payment_id)
        if payment is None:
            logger.warning("Settlement skipped: payment not found", extra={"payment_id": payment_id})
            return SettlementResult(payment_id=payment_id, settled=False)

        if not payments.mark_success(payment_id, external_ref, payment_date, metadata):
            db.rollback()
            return SettlementResult(payment_id=payment_id, settled=False, already_settled=True)

        contract = contracts.get_for_update(payment.contract_id)
        penalties = contracts.get_unpaid_penalties(contract.id)
        installments = contracts.get_unpaid_installments(contract.id)

        result = allocate(
            ContractState(
                id=contract.id,
                total_price_pesewas=contract.total_price_pesewas,
                total_paid_pesewas=contract.total_paid_pesewas,
                outstanding_balance_pesewas=contract.outstanding_balance_pesewas,
                status=ContractStatus(contract.status),
            ),
            [PenaltyState(id=p.id, amount_pesewas=p.amount_pesewas, is_paid=p.is_paid) for p in penalties],
            [
                InstallmentState(
                    id=i.id,
                    installment_no=i.installment_no,
                    amount_pesewas=i.amount_pesewas,
                    paid_pesewas=i.paid_pesewas,
                    status=InstallmentStatus(i.status),
                )
                for i in installments
            ],
            payment.amount_pesewas,
        )

        _write_allocation(contract, penalties, installments, result, now)
        payments.record_unapplied(payment_id, result.unapplied_pesewas, now)
        contract_id, transaction_ref = contract.id, payment.transaction_ref
        db.commit()
    except Exception:
        db.rollback()
        raise

    settlement_counter.labels(source=source).inc()
    log_payment_event(
        "payment_settled",
        transaction_ref=transaction_ref,
        payment_id=payment_id,
        contract_id=contract_id,
        status=PaymentStatus.SUCCESS.value,
        amount_pesewas=result.incoming_pesewas,
        source=source,
        outstanding_balance_pesewas=result.outstanding_balance_pesewas,
    )
    audit.record_audit(
        db,
        audit.PAYMENT_SETTLED,
        "PaymentTransaction",
        payment_id,
        new_values={
            "source": source,
            "amount_pesewas": result.incoming_pesewas,
            "penalties_paid": [p.penalty_id for p in result.penalties],
            "installments": {i.installment_no: i.status.value for i in result.installments},
            "total_paid_pesewas": result.total_paid_pesewas,
            "outstanding_balance_pesewas": result.outstanding_balance_pesewas,
            "contract_status": result.contract_status.value,
        },
    )

    if result.unapplied_pesewas > 0:
        unapplied_funds_counter.inc(result.unapplied_pesewas)
        logger.warning(
            "Payment exceeded contract debt, funds left unapplied",
            extra={
                "payment_id": payment_id,
                "contract_id": contract_id,
                "unapplied_pesewas": result.unapplied_pesewas,
            },
        )
        audit.record_audit(
            db,
            audit.UNAPPLIED_FUNDS,
            "PaymentTransaction",
            payment_id,
            new_values={"unapplied_pesewas": result.unapplied_pesewas, "contract_id": contract_id},
        )

    return SettlementResult(payment_id=payment_id, settled=True, allocation=result)
