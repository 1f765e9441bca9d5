"""Hubtel webhooks - always acknowledged with 200"""

import json
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hirepay.api.dependencies import get_notifier, get_request_id
from hirepay.api.v1.schemas import CallbackAck, HubtelCallbackRequest, PreapprovalCallbackRequest
from hirepay.infrastructure.database.session import get_db
from hirepay.infrastructure.observability.metrics import record_callback
from hirepay.services.callbacks import process_callback, process_preapproval_callback
from hirepay.services.notifications import PaymentNotifier

router = APIRouter()
logger = logging.getLogger(__name__)


async def _read_payload(request: Request) -> dict | None:
    try:
        payload = json.loads(await request.body())
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@router.post("/callbacks/hubtel", response_model=CallbackAck)
async def hubtel_payment_callback(
    request: Request,
    db: Session = Depends(get_db),
    notifier: PaymentNotifier = Depends(get_notifier),
):
    """
    Payment result from Hubtel.

    Hubtel redelivers anything that is not a 200, so every outcome
    (unknown reference, bad payload, internal error) is acknowledged and
    logged instead of raised. Redeliveries are idempotent.
    """
    request_id = get_request_id(request)
    payload = await _read_payload(request)
    if payload is None:
        logger.error("Unreadable Hubtel callback body", extra={"request_id": request_id})
        record_callback("invalid")
        return CallbackAck(outcome="invalid")

    try:
        event = HubtelCallbackRequest.model_validate(payload).to_event(payload)
    except ValueError as e:
        logger.error(f"Invalid Hubtel callback payload: {e}", extra={"request_id": request_id})
        record_callback("invalid")
        return CallbackAck(outcome="invalid")

    try:
        result = await process_callback(db, event, notifier)
    except Exception:
        db.rollback()
        logger.exception(
            "Hubtel callback processing failed",
            extra={"request_id": request_id, "transaction_ref": event.client_reference},
        )
        record_callback("error")
        return CallbackAck(outcome="error")

    return CallbackAck(outcome=result.outcome)


@router.post("/callbacks/hubtel/preapproval", response_model=CallbackAck)
async def hubtel_preapproval_callback(request: Request, db: Session = Depends(get_db)):
    """Direct debit mandate state change; acknowledged with 200 like payment callbacks"""
    request_id = get_request_id(request)
    payload = await _read_payload(request)
    if payload is None:
        logger.error("Unreadable preapproval callback body", extra={"request_id": request_id})
        return CallbackAck(outcome="invalid")

    try:
        event = PreapprovalCallbackRequest.model_validate(payload).to_event(payload)
    except ValueError as e:
        logger.error(f"Invalid preapproval callback payload: {e}", extra={"request_id": request_id})
        return CallbackAck(outcome="invalid")

    try:
        outcome = process_preapproval_callback(db, event)
    except Exception:
        db.rollback()
        logger.exception(
            "Preapproval callback processing failed",
            extra={"request_id": request_id, "client_reference_id": event.client_reference_id},
        )
        return CallbackAck(outcome="error")

    return CallbackAck(outcome=outcome)
