"""Payment initiation, manual payments and status"""

import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hirepay.api.dependencies import get_audit_context, get_hubtel_client, get_notifier, get_request_id
from hirepay.api.errors import to_http_exception
from hirepay.api.v1.schemas import (
    ManualPaymentRequest,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
)
from hirepay.domain.exceptions import DomainException
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.infrastructure.database.session import get_db
from hirepay.services import audit, payments
from hirepay.services.notifications import PaymentNotifier

router = APIRouter()


@router.post("/payments", response_model=PaymentInitiateResponse, status_code=201)
async def initiate_payment(
    request_body: PaymentInitiateRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """
    Charge the customer's mobile money wallet.

    Flow:
    1. Validate contract, amount and wallet details (400/404, nothing stored)
    2. Store a PENDING transaction
    3. Ask Hubtel to charge; the final result arrives on the callback

    A rejected or failed charge is not an HTTP error: the transaction comes
    back FAILED with its next retry time.
    """
    request_id = get_request_id(request)
    try:
        payment, attempt = await payments.initiate_payment(
            db,
            gateway,
            payments.PaymentRequest(
                contract_id=request_body.contract_id,
                amount_pesewas=request_body.amount_pesewas,
                phone=request_body.phone,
                network=request_body.network,
                payment_method=request_body.payment_method.value if request_body.payment_method else None,
                description=request_body.description,
            ),
            context,
        )
        return PaymentInitiateResponse(
            payment=PaymentResponse.model_validate(payment),
            message=attempt.message,
            response_code=attempt.response_code,
        )

    except DomainException as e:
        db.rollback()
        logging.warning(f"Payment rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)

    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)


@router.post("/payments/manual", response_model=PaymentResponse, status_code=201)
def record_manual_payment(
    request_body: ManualPaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """Record a cash or bank transfer payment and apply it to the contract"""
    request_id = get_request_id(request)
    try:
        return payments.record_manual_payment(
            db,
            payments.ManualPaymentRequest(
                contract_id=request_body.contract_id,
                amount_pesewas=request_body.amount_pesewas,
                payment_method=request_body.payment_method.value,
                payment_date=request_body.payment_date,
                reference=request_body.reference,
                notes=request_body.notes,
            ),
            context,
        )

    except DomainException as e:
        db.rollback()
        logging.warning(f"Manual payment rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)

    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)


@router.get("/payments/{reference}/status", response_model=PaymentResponse)
async def get_payment_status(
    reference: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    notifier: PaymentNotifier = Depends(get_notifier),
):
    """Current state of a payment; a PENDING one is checked with Hubtel first"""
    try:
        return await payments.refresh_payment_status(db, gateway, reference, notifier)
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))
