"""Retry engine - re-charges failed payments on the configured schedule"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from hirepay.domain.exceptions import (
    GatewayError,
    InvalidRetrySettingsError,
    PaymentNotFoundError,
    RetryNotAllowedError,
)
from hirepay.domain.models import PaymentStatus, ProviderOutcome
from hirepay.domain.retry_policy import (
    format_retry_schedule,
    is_eligible_for_retry,
    parse_retry_schedule,
    retries_exhausted,
    retry_reference,
    validate_settings_update,
)
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.infrastructure.database.models import PaymentRetry, PaymentTransaction
from hirepay.infrastructure.database.repositories import (
    PaymentRetryRepository,
    PaymentTransactionRepository,
    RetrySettingsRepository,
)
from hirepay.infrastructure.observability.logging import log_payment_event
from hirepay.infrastructure.observability.metrics import retry_attempt_counter
from hirepay.services import audit
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.payments import GATEWAY_METHODS, execute_charge, finalize_retry_attempt
from hirepay.services.settlement import apply_successful_payment
from hirepay.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RetryOutcome:
    payment_id: str
    status: str  # pending | failed | settled | skipped
    message: str
    transaction_ref: Optional[str] = None
    next_retry_at: Optional[datetime] = None


@dataclass
class RetryBatchResult:
    total: int = 0
    pending: int = 0
    failed: int = 0
    settled: int = 0
    skipped: int = 0
    errors: int = 0
    results: List[RetryOutcome] = field(default_factory=list)

    def add(self, outcome: RetryOutcome) -> None:
        self.total += 1
        setattr(self, outcome.status, getattr(self, outcome.status) + 1)
        self.results.append(outcome)


def get_payments_for_retry(db: Session, now: datetime | None = None) -> List[PaymentTransaction]:
    """FAILED payments whose next retry is due; empty while auto retry is disabled"""
    now = now or utcnow()
    retry_settings = RetrySettingsRepository(db).get_or_create()
    if not retry_settings.enable_auto_retry:
        return []

    candidates = PaymentTransactionRepository(db).get_eligible_for_retry(now, retry_settings.max_retry_attempts)
    return [p for p in candidates if is_eligible_for_retry(p, retry_settings, now)]


async def _reconcile_ambiguous(
    db: Session,
    gateway: HubtelClient,
    payment: PaymentTransaction,
    retry_settings,
    now: datetime,
) -> Optional[RetryOutcome]:
    """
    Ask the provider what happened to the last attempt before charging again.

    Returns an outcome when the retry must not go ahead (already paid, still
    processing, or status unknown), None when a new charge is safe. A
    deferred payment gets its next retry pushed back by the retry interval,
    so the scheduler does not query it again on every tick.
    """
    payment_id, reference = payment.id, payment.active_reference
    try:
        status = await gateway.query_status(reference)
    except GatewayError as e:
        logger.warning(
            f"Retry deferred, status check failed: {e}",
            extra={"payment_id": payment_id, "transaction_ref": reference},
        )
        return _defer(db, payment_id, reference, "Status of previous attempt unknown", retry_settings, now)

    if not status.found or status.outcome.is_failure:
        return None

    if status.outcome == ProviderOutcome.SUCCESS:
        result = apply_successful_payment(
            db,
            payment_id,
            external_ref=status.external_ref,
            metadata={"status_check": status.raw, "settled_reference": reference},
            source="retry_reconcile",
        )
        if result.settled:
            finalize_retry_attempt(db, reference, PaymentStatus.SUCCESS, external_ref=status.external_ref)
            db.commit()
            return RetryOutcome(payment_id, "settled", "Previous attempt had succeeded", reference)
        return RetryOutcome(payment_id, "skipped", "Payment already settled", reference)

    return _defer(db, payment_id, reference, "Previous attempt still processing", retry_settings, now)


def _defer(db: Session, payment_id: str, reference: str, message: str, retry_settings, now: datetime) -> RetryOutcome:
    next_retry_at = now + timedelta(hours=retry_settings.retry_interval_hours)
    PaymentTransactionRepository(db).defer_retry(payment_id, next_retry_at)
    db.commit()
    return RetryOutcome(payment_id, "skipped", message, reference, next_retry_at)


async def retry_payment(
    db: Session,
    payment_id: str,
    gateway: HubtelClient,
    notifier: PaymentNotifier | None = None,
    now: datetime | None = None,
    context: audit.AuditContext | None = None,
) -> RetryOutcome:
    """
    Charge a FAILED payment again.

    Flow:
    1. Check the payment may be retried (FAILED, attempts left, gateway method)
    2. If the last failure was ambiguous, reconcile with a status query first
    3. Claim the attempt with a conditional FAILED -> PENDING update
       (losing the claim means someone else is retrying: skipped)
    4. Charge under <transaction_ref>-retry-<n> and record the attempt

    Raises:
        PaymentNotFoundError: Unknown payment id
        RetryNotAllowedError: Not FAILED, retries exhausted, or not a gateway payment
    """
    now = now or utcnow()
    retry_settings = RetrySettingsRepository(db).get_or_create()
    payments = PaymentTransactionRepository(db)

    payment = payments.get_by_id(payment_id)
    if payment is None:
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    if payment.status != PaymentStatus.FAILED.value:
        raise RetryNotAllowedError(f"Only FAILED payments can be retried (payment is {payment.status})")
    if retries_exhausted(payment.retry_count, retry_settings.max_retry_attempts):
        raise RetryNotAllowedError("Maximum retry attempts reached")
    if payment.contract.payment_method not in GATEWAY_METHODS or payment.payment_method not in GATEWAY_METHODS:
        raise RetryNotAllowedError("Only Hubtel payments can be retried")

    if payment.outcome_ambiguous:
        deferred = await _reconcile_ambiguous(db, gateway, payment, retry_settings, now)
        if deferred is not None:
            retry_attempt_counter.labels(outcome=deferred.status).inc()
            return deferred

    expected_count = payment.retry_count
    attempt_number = expected_count + 1
    reference = retry_reference(payment.transaction_ref, attempt_number)

    retries = PaymentRetryRepository(db)
    if not payments.begin_retry(payment_id, expected_count, reference, now):
        db.rollback()
        retry_attempt_counter.labels(outcome="skipped").inc()
        return RetryOutcome(payment_id, "skipped", "Payment is already being retried", reference)
    # the attempt is on record before the charge goes out
    retries.record_attempt(
        payment_id=payment_id,
        attempt_number=attempt_number,
        status=PaymentStatus.PENDING.value,
        transaction_ref=reference,
        attempted_at=now,
    )
    db.commit()

    attempt = await execute_charge(db, gateway, payment, reference, retry_settings, now)

    # a callback that beat us here has already completed the attempt row
    if attempt.failed:
        retries.complete(
            reference,
            PaymentStatus.FAILED.value,
            response_code=attempt.response_code,
            response_message=attempt.message,
            failure_reason=attempt.message,
            external_ref=attempt.external_ref,
        )
    else:
        retries.record_response(reference, attempt.external_ref, attempt.response_code, attempt.message)
    db.commit()

    status = {PaymentStatus.FAILED: "failed", PaymentStatus.SUCCESS: "settled"}.get(attempt.status, "pending")
    retry_attempt_counter.labels(outcome=status).inc()
    log_payment_event(
        "payment_retry",
        transaction_ref=reference,
        payment_id=payment_id,
        status=attempt.status.value,
        attempt_number=attempt_number,
    )
    audit.record_audit(
        db,
        audit.PAYMENT_RETRY,
        "PaymentTransaction",
        payment_id,
        old_values={"status": PaymentStatus.FAILED.value, "retry_count": expected_count},
        new_values={
            "status": attempt.status.value,
            "retry_count": attempt_number,
            "reference": reference,
            "message": attempt.message,
            "next_retry_at": attempt.next_retry_at,
        },
        context=context,
    )

    if attempt.failed and notifier is not None:
        await notifier.notify_failure(db, payments.get_by_id(payment_id), attempt.message, attempt.next_retry_at)

    return RetryOutcome(payment_id, status, attempt.message, reference, attempt.next_retry_at)


async def retry_multiple_payments(
    db: Session,
    payment_ids: Iterable[str],
    gateway: HubtelClient,
    notifier: PaymentNotifier | None = None,
    context: audit.AuditContext | None = None,
) -> RetryBatchResult:
    """Retry each payment in turn; one payment's problem does not stop the batch"""
    batch = RetryBatchResult()
    for payment_id in payment_ids:
        try:
            batch.add(await retry_payment(db, payment_id, gateway, notifier, context=context))
        except (PaymentNotFoundError, RetryNotAllowedError) as e:
            batch.add(RetryOutcome(payment_id, "skipped", str(e)))
        except Exception as e:
            db.rollback()
            logger.exception("Retry failed unexpectedly", extra={"payment_id": payment_id})
            batch.errors += 1
            batch.results.append(RetryOutcome(payment_id, "skipped", f"Unexpected error: {e}"))
            batch.total += 1
    return batch


async def retry_all_eligible_payments(
    db: Session,
    gateway: HubtelClient,
    notifier: PaymentNotifier | None = None,
    now: datetime | None = None,
) -> RetryBatchResult:
    """Scheduled job body: retry every payment whose next retry is due"""
    eligible = get_payments_for_retry(db, now)
    logger.info(f"Retrying {len(eligible)} eligible payments")
    batch = await retry_multiple_payments(db, [p.id for p in eligible], gateway, notifier)
    logger.info(
        "Payment retry run finished",
        extra={
            "total": batch.total,
            "pending": batch.pending,
            "failed": batch.failed,
            "settled": batch.settled,
            "skipped": batch.skipped,
            "errors": batch.errors,
        },
    )
    return batch


def get_failed_payments(
    db: Session,
    page: int = 1,
    limit: int = 20,
    contract_id: str | None = None,
    customer_id: str | None = None,
    exhausted: bool | None = None,
):
    retry_settings = RetrySettingsRepository(db).get_or_create()
    rows, total = PaymentTransactionRepository(db).get_failed_payments(
        page=page,
        limit=limit,
        contract_id=contract_id,
        customer_id=customer_id,
        exhausted=exhausted,
        max_retry_attempts=retry_settings.max_retry_attempts,
    )
    return rows, total, retry_settings.max_retry_attempts


def get_retry_history(db: Session, payment_id: str) -> tuple[PaymentTransaction, List[PaymentRetry]]:
    payment = PaymentTransactionRepository(db).get_by_id(payment_id)
    if payment is None:
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    return payment, PaymentRetryRepository(db).get_history(payment_id)


def update_retry_settings(db: Session, changes: dict, context: audit.AuditContext | None = None):
    """
    Apply an admin update to the retry settings (last writer wins).

    Raises:
        InvalidRetrySettingsError: A value is outside its allowed range
    """
    changes = {key: value for key, value in changes.items() if value is not None}
    try:
        validate_settings_update(changes)
    except ValueError as e:
        raise InvalidRetrySettingsError(str(e)) from e
    if "retry_schedule" in changes:
        changes["retry_schedule"] = format_retry_schedule(parse_retry_schedule(changes["retry_schedule"]))

    repo = RetrySettingsRepository(db)
    old_values, new_values = repo.update(changes, updated_by=context.user_id if context else None)
    db.commit()

    audit.record_audit(
        db,
        audit.UPDATE_RETRY_SETTINGS,
        "RetrySettings",
        str(RetrySettingsRepository.SETTINGS_ID),
        old_values=old_values,
        new_values=new_values,
        context=context,
    )
    return repo.get_or_create()
