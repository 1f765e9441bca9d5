"""Hubtel webhook processing - idempotent resolution of payment and mandate callbacks"""

import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session
from hirepay.domain.models import CallbackEvent, PaymentStatus, PreapprovalEvent, ProviderOutcome
from hirepay.domain.provider_codes import decode_callback_code, failure_message
from hirepay.domain.retry_policy import next_retry_from_settings
from hirepay.infrastructure.clients.hubtel import cedis_to_pesewas
from hirepay.infrastructure.database.models import PaymentTransaction
from hirepay.infrastructure.database.repositories import (
    ContractRepository,
    PaymentTransactionRepository,
    PreapprovalRepository,
    RetrySettingsRepository,
)
from hirepay.infrastructure.observability.logging import log_payment_event
from hirepay.infrastructure.observability.metrics import record_callback
from hirepay.services import audit
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.payments import finalize_retry_attempt
from hirepay.services.settlement import apply_successful_payment
from hirepay.utils.date_utils import parse_provider_datetime

logger = logging.getLogger(__name__)

PREAPPROVAL_STATUSES = ("PENDING", "APPROVED", "REJECTED", "CANCELLED", "EXPIRED")


@dataclass
class CallbackResult:
    outcome: str  # settled | duplicate | failed | stale | pending | not_found | invalid
    payment_id: Optional[str] = None
    reference: Optional[str] = None


def _handle_duplicate_success(db: Session, payment: PaymentTransaction, reference: str) -> CallbackResult:
    """SUCCESS for a payment that is already settled: nothing to apply"""
    settled_reference = (payment.metadata_json or {}).get("settled_reference", payment.active_reference)
    if reference != settled_reference:
        logger.warning(
            "Second successful charge reported for a settled payment",
            extra={
                "payment_id": payment.id,
                "transaction_ref": reference,
                "settled_reference": settled_reference,
            },
        )
        audit.record_audit(
            db,
            audit.POSSIBLE_DOUBLE_CHARGE,
            "PaymentTransaction",
            payment.id,
            new_values={"reference": reference, "settled_reference": settled_reference},
        )
    else:
        logger.info("Duplicate success callback ignored", extra={"payment_id": payment.id, "transaction_ref": reference})

    record_callback("duplicate")
    return CallbackResult("duplicate", payment.id, reference)


def _settle(db: Session, payment: PaymentTransaction, event: CallbackEvent, reference: str) -> CallbackResult:
    payment_id = payment.id

    if event.amount is not None:
        try:
            reported = cedis_to_pesewas(event.amount)
        except (ArithmeticError, ValueError):
            reported = None
        if reported != payment.amount_pesewas:
            logger.warning(
                "Callback amount does not match payment amount",
                extra={
                    "payment_id": payment_id,
                    "transaction_ref": reference,
                    "reported_amount": event.amount,
                    "amount_pesewas": payment.amount_pesewas,
                },
            )

    result = apply_successful_payment(
        db,
        payment_id,
        external_ref=event.external_transaction_id or event.transaction_id,
        payment_date=parse_provider_datetime(event.payment_date),
        metadata={"callback": event.raw, "settled_reference": reference},
        source="callback",
    )
    if result.already_settled:
        # Lost the race against another delivery or a status poll
        return _handle_duplicate_success(db, PaymentTransactionRepository(db).get_by_id(payment_id), reference)

    if result.settled:
        finalize_retry_attempt(
            db,
            reference,
            PaymentStatus.SUCCESS,
            response_code=event.response_code,
            response_message=event.message,
            external_ref=event.external_transaction_id or event.transaction_id,
        )
        db.commit()

    record_callback("settled")
    return CallbackResult("settled", payment_id, reference)


async def _fail(
    db: Session,
    payment: PaymentTransaction,
    event: CallbackEvent,
    reference: str,
    outcome: ProviderOutcome,
    notifier: PaymentNotifier | None,
) -> CallbackResult:
    payment_id = payment.id

    if payment.status != PaymentStatus.PENDING.value or reference != payment.active_reference:
        # Failure of an attempt that is no longer the one in flight
        logger.info(
            "Stale failure callback ignored",
            extra={"payment_id": payment_id, "transaction_ref": reference, "payment_status": payment.status},
        )
        record_callback("stale")
        return CallbackResult("stale", payment_id, reference)

    retry_count = payment.retry_count
    payments = PaymentTransactionRepository(db)
    retry_settings = RetrySettingsRepository(db).get_or_create()
    next_retry_at = next_retry_from_settings(retry_settings, retry_count)
    reason = failure_message(outcome, event.description)

    if not payments.mark_failed(payment_id, reason, next_retry_at):
        db.rollback()
        record_callback("stale")
        return CallbackResult("stale", payment_id, reference)

    payments.annotate(payment_id, {"callback": event.raw})
    finalize_retry_attempt(
        db,
        reference,
        PaymentStatus.FAILED,
        response_code=event.response_code,
        response_message=event.message,
        failure_reason=reason,
    )
    db.commit()

    record_callback("failed")
    log_payment_event(
        "payment_failed",
        transaction_ref=reference,
        payment_id=payment_id,
        status=PaymentStatus.FAILED.value,
        response_code=event.response_code,
        next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
    )
    audit.record_audit(
        db,
        audit.PAYMENT_FAILED,
        "PaymentTransaction",
        payment_id,
        old_values={"status": PaymentStatus.PENDING.value},
        new_values={
            "status": PaymentStatus.FAILED.value,
            "reference": reference,
            "failure_reason": reason,
            "retry_count": retry_count,
            "next_retry_at": next_retry_at,
        },
    )

    if notifier is not None:
        await notifier.notify_failure(db, payments.get_by_id(payment_id), reason, next_retry_at)

    return CallbackResult("failed", payment_id, reference)


async def process_callback(
    db: Session,
    event: CallbackEvent,
    notifier: PaymentNotifier | None = None,
) -> CallbackResult:
    """
    Apply one payment webhook.

    Requirements:
    - Resolve the exact attempt by client reference (original or -retry-N)
    - SUCCESS settles once; redeliveries are duplicates
    - Failure marks the in-flight attempt FAILED with its next retry and
      notifies the customer (best effort); failures of superseded attempts
      are stale and ignored
    - Unknown codes leave the payment PENDING and only annotate it
    - Unknown or missing reference is logged and ignored

    Returns:
        CallbackResult describing what happened (the HTTP layer answers 200 regardless)
    """
    reference = event.client_reference
    if not reference:
        logger.error("Callback without client reference", extra={"response_code": event.response_code})
        record_callback("invalid")
        return CallbackResult("invalid")

    payments = PaymentTransactionRepository(db)
    payment = payments.get_by_reference(reference)
    if payment is None:
        logger.warning("Callback for unknown reference", extra={"transaction_ref": reference})
        record_callback("not_found")
        return CallbackResult("not_found", reference=reference)

    outcome = decode_callback_code(event.response_code)
    logger.info(
        "Hubtel callback received",
        extra={
            "payment_id": payment.id,
            "transaction_ref": reference,
            "response_code": event.response_code,
            "outcome": outcome.value,
        },
    )

    if outcome == ProviderOutcome.SUCCESS:
        if payment.status == PaymentStatus.SUCCESS.value:
            return _handle_duplicate_success(db, payment, reference)
        return _settle(db, payment, event, reference)

    if outcome.is_failure:
        return await _fail(db, payment, event, reference, outcome, notifier)

    payments.annotate(payment.id, {"last_callback": event.raw, "last_callback_code": event.response_code})
    db.commit()
    record_callback("pending")
    return CallbackResult("pending", payment.id, reference)


def process_preapproval_callback(db: Session, event: PreapprovalEvent) -> str:
    """
    Apply a direct debit mandate webhook.

    An APPROVED mandate is linked to the customer's direct debit contracts
    that have none yet. Returns updated | ignored | not_found | invalid.
    """
    reference = event.client_reference_id
    if not reference:
        logger.error("Preapproval callback without client reference")
        return "invalid"

    preapprovals = PreapprovalRepository(db)
    preapproval = preapprovals.get_by_client_reference(reference)
    if preapproval is None:
        logger.warning("Preapproval callback for unknown reference", extra={"client_reference_id": reference})
        return "not_found"

    status = (event.preapproval_status or "").upper()
    if status not in PREAPPROVAL_STATUSES:
        logger.warning(
            f"Unknown preapproval status {event.preapproval_status!r}",
            extra={"client_reference_id": reference},
        )
        return "ignored"

    preapprovals.update_status(preapproval, status, event.provider_preapproval_id, event.raw)

    if status == "APPROVED":
        for contract in ContractRepository(db).get_direct_debit_contracts(preapproval.customer_id):
            if contract.preapproval_client_reference is None:
                contract.preapproval_client_reference = reference
    db.commit()

    logger.info("Preapproval updated", extra={"client_reference_id": reference, "preapproval_status": status})
    return "updated"
