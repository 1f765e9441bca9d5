"""Direct debit mandates"""

import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hirepay.api.dependencies import get_audit_context, get_hubtel_client, get_request_id
from hirepay.api.errors import to_http_exception
from hirepay.api.v1.schemas import PreapprovalInitiateRequest, PreapprovalResponse, PreapprovalVerifyRequest
from hirepay.domain.exceptions import DomainException
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.infrastructure.database.session import get_db
from hirepay.services import audit, preapprovals

router = APIRouter()


def _response(preapproval, message: str | None = None) -> PreapprovalResponse:
    response = PreapprovalResponse.model_validate(preapproval)
    response.message = message
    return response


@router.post("/preapprovals", response_model=PreapprovalResponse, status_code=201)
async def initiate_preapproval(
    request_body: PreapprovalInitiateRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """
    Start a direct debit mandate.

    Flow:
    1. Check network (MTN, VODAFONE, TELECEL) and customer
    2. Refuse when the number already has an approved mandate
    3. Ask Hubtel to start the approval (USSD prompt or OTP)
    """
    request_id = get_request_id(request)
    try:
        preapproval = await preapprovals.initiate_preapproval(
            db, gateway, request_body.customer_id, request_body.phone, request_body.network, context
        )
        return _response(preapproval)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Preapproval rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)


@router.post("/preapprovals/verify-otp", response_model=PreapprovalResponse)
async def verify_preapproval_otp(
    request_body: PreapprovalVerifyRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
):
    try:
        preapproval, message = await preapprovals.verify_preapproval_otp(
            db, gateway, request_body.client_reference_id, request_body.otp_code
        )
        return _response(preapproval, message)
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))


@router.get("/preapprovals/{client_reference_id}", response_model=PreapprovalResponse)
async def get_preapproval(
    client_reference_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
):
    try:
        return _response(await preapprovals.refresh_preapproval(db, gateway, client_reference_id))
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))


@router.post("/preapprovals/{client_reference_id}/cancel", response_model=PreapprovalResponse)
async def cancel_preapproval(
    client_reference_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: HubtelClient = Depends(get_hubtel_client),
    context: audit.AuditContext = Depends(get_audit_context),
):
    try:
        return _response(await preapprovals.cancel_preapproval(db, gateway, client_reference_id, context))
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))
