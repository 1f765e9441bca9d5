"""Admin endpoints - retry settings, failed payments dashboard, jobs and reconciliation"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from hirepay.api.dependencies import (
    get_audit_context,
    get_hubtel_client,
    get_notifier,
    get_request_id,
    get_scheduler,
)
from hirepay.api.errors import to_http_exception
from hirepay.api.v1.schemas import (
    DiscrepancySchema,
    FailedPaymentsResponse,
    OverdueSweepResponse,
    PaymentResponse,
    PaymentRetrySchema,
    ReconciliationResponse,
    RetryBatchResponse,
    RetryHistoryResponse,
    RetryMultipleRequest,
    RetryOutcomeSchema,
    RetrySettingsSchema,
    RetrySettingsUpdate,
)
from hirepay.domain.exceptions import DomainException
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.infrastructure.database.repositories import RetrySettingsRepository
from hirepay.infrastructure.database.session import get_db
from hirepay.services import audit, retries
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.reconciliation import find_discrepancies
from hirepay.services.scheduler import OVERDUE_JOB, RETRY_JOB, PaymentScheduler

router = APIRouter(prefix="/admin")


@router.get("/retry-settings", response_model=RetrySettingsSchema)
def get_retry_settings(db: Session = Depends(get_db)):
    return RetrySettingsRepository(db).get_or_create()


@router.put("/retry-settings", response_model=RetrySettingsSchema)
def update_retry_settings(
    request_body: RetrySettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """Partial update; attempts 0-10, interval 1-168 hours, schedule of 0-30 day offsets"""
    request_id = get_request_id(request)
    try:
        return retries.update_retry_settings(db, request_body.model_dump(exclude_unset=True), context)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Retry settings rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)


@router.get("/payments/failed", response_model=FailedPaymentsResponse)
def list_failed_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    contract_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    exhausted: Optional[bool] = Query(None, description="Only payments with (true) or without (false) retries left"),
    db: Session = Depends(get_db),
):
    rows, total, max_attempts = retries.get_failed_payments(db, page, limit, contract_id, customer_id, exhausted)
    return FailedPaymentsResponse(
        payments=[PaymentResponse.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        max_retry_attempts=max_attempts,
    )


@router.get("/payments/{payment_id}/retries", response_model=RetryHistoryResponse)
def get_retry_history(payment_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        payment, history = retries.get_retry_history(db, payment_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))
    return RetryHistoryResponse(
        payment=PaymentResponse.model_validate(payment),
        retries=[PaymentRetrySchema.model_validate(row) for row in history],
    )


@router.post("/payments/{payment_id}/retry", response_model=RetryOutcomeSchema)
async def retry_payment(
    payment_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    notifier: PaymentNotifier = Depends(get_notifier),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """
    Retry one FAILED payment now.

    Flow:
    1. Check the payment is FAILED, has attempts left and is a Hubtel payment
    2. Reconcile an ambiguous last attempt with a status query
    3. Charge again under <transaction_ref>-retry-<n>
    """
    request_id = get_request_id(request)
    try:
        return await retries.retry_payment(db, payment_id, gateway, notifier, context=context)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Retry rejected: {e}", extra={"request_id": request_id, "payment_id": payment_id})
        raise to_http_exception(e, request_id)
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)


@router.post("/payments/retry-multiple", response_model=RetryBatchResponse)
async def retry_multiple_payments(
    request_body: RetryMultipleRequest,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    notifier: PaymentNotifier = Depends(get_notifier),
    context: audit.AuditContext = Depends(get_audit_context),
):
    return await retries.retry_multiple_payments(db, request_body.payment_ids, gateway, notifier, context)


@router.post("/payments/retry-all", response_model=RetryBatchResponse)
async def retry_all_payments(request: Request, scheduler: PaymentScheduler = Depends(get_scheduler)):
    """Run the automatic retry job now; 409 while a run is in progress"""
    try:
        return await scheduler.run_now(RETRY_JOB)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))


@router.post("/jobs/overdue-sweep", response_model=OverdueSweepResponse)
async def run_overdue_sweep(request: Request, scheduler: PaymentScheduler = Depends(get_scheduler)):
    try:
        return await scheduler.run_now(OVERDUE_JOB)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))


@router.get("/reconciliation", response_model=ReconciliationResponse)
def reconciliation_report(db: Session = Depends(get_db)):
    """Contracts whose totals disagree with their successful payments (read-only)"""
    discrepancies = find_discrepancies(db)
    return ReconciliationResponse(
        contracts_with_discrepancies=len(discrepancies),
        discrepancies=[
            DiscrepancySchema(
                contract_id=d.contract_id,
                contract_number=d.contract_number,
                deposit_pesewas=d.deposit_pesewas,
                successful_payments_pesewas=d.successful_payments_pesewas,
                expected_total_paid_pesewas=d.expected_total_paid_pesewas,
                recorded_total_paid_pesewas=d.recorded_total_paid_pesewas,
                expected_outstanding_pesewas=d.expected_outstanding_pesewas,
                recorded_outstanding_pesewas=d.recorded_outstanding_pesewas,
                difference_pesewas=d.difference_pesewas,
            )
            for d in discrepancies
        ],
    )
