"""Direct debit mandates (Hubtel preapprovals)"""

import logging
from sqlalchemy.orm import Session
from hirepay.domain.exceptions import (
    CustomerNotFoundError,
    GatewayError,
    GatewayResponseError,
    PaymentValidationError,
    PreapprovalNotFoundError,
    UnsupportedNetworkError,
)
from hirepay.infrastructure.clients.hubtel import DIRECT_DEBIT_NETWORKS, HubtelClient, channel_for, format_phone
from hirepay.infrastructure.database.models import Preapproval
from hirepay.infrastructure.database.repositories import CustomerRepository, PreapprovalRepository
from hirepay.services import audit
from hirepay.services.callbacks import PREAPPROVAL_STATUSES
from hirepay.utils.references import generate_preapproval_reference

logger = logging.getLogger(__name__)


def _get(db: Session, client_reference_id: str) -> Preapproval:
    preapproval = PreapprovalRepository(db).get_by_client_reference(client_reference_id)
    if preapproval is None:
        raise PreapprovalNotFoundError(f"Preapproval {client_reference_id} not found")
    return preapproval


async def initiate_preapproval(
    db: Session,
    gateway: HubtelClient,
    customer_id: str,
    phone: str,
    network: str,
    context: audit.AuditContext | None = None,
) -> Preapproval:
    """
    Ask the customer to approve recurring charges on their wallet.

    Raises:
        UnsupportedNetworkError: Network without direct debit
        CustomerNotFoundError: Unknown customer
        PaymentValidationError: An approved mandate already exists for the number
        GatewayError: Hubtel did not accept the request
    """
    network = (network or "").upper()
    if network not in DIRECT_DEBIT_NETWORKS:
        raise UnsupportedNetworkError("Direct Debit only supports MTN, VODAFONE and TELECEL")

    if CustomerRepository(db).get_by_id(customer_id) is None:
        raise CustomerNotFoundError(f"Customer {customer_id} not found")

    preapprovals = PreapprovalRepository(db)
    msisdn = format_phone(phone)
    if preapprovals.get_approved(customer_id, msisdn) is not None:
        raise PaymentValidationError("Customer already has an active preapproval for this phone number")

    client_reference_id = generate_preapproval_reference()
    response = await gateway.initiate_preapproval(msisdn, network, client_reference_id)

    preapprovals.create(
        customer_id=customer_id,
        customer_msisdn=msisdn,
        channel=channel_for(network, is_direct_debit=True),
        client_reference_id=client_reference_id,
        provider_preapproval_id=response.provider_preapproval_id,
        verification_type=response.verification_type,
        otp_prefix=response.otp_prefix,
        metadata=response.raw,
    )
    db.commit()

    audit.record_audit(
        db,
        audit.INITIATE_PREAPPROVAL,
        "HubtelPreapproval",
        client_reference_id,
        new_values={
            "customer_id": customer_id,
            "network": network,
            "verification_type": response.verification_type,
        },
        context=context,
    )
    return _get(db, client_reference_id)


async def verify_preapproval_otp(
    db: Session,
    gateway: HubtelClient,
    client_reference_id: str,
    otp_code: str,
) -> tuple[Preapproval, str]:
    """Submit the OTP the customer received; returns the mandate and Hubtel's message"""
    preapproval = _get(db, client_reference_id)
    if preapproval.status != "PENDING":
        raise PaymentValidationError(f"Preapproval is already {preapproval.status.lower()}")
    if not preapproval.provider_preapproval_id:
        raise PaymentValidationError("Invalid preapproval state")

    response = await gateway.verify_preapproval_otp(
        preapproval.customer_msisdn,
        preapproval.provider_preapproval_id,
        client_reference_id,
        otp_code,
    )
    if response.status in PREAPPROVAL_STATUSES and response.status != preapproval.status:
        PreapprovalRepository(db).update_status(preapproval, response.status)
        db.commit()
    return _get(db, client_reference_id), response.message


async def refresh_preapproval(db: Session, gateway: HubtelClient, client_reference_id: str) -> Preapproval:
    """Current mandate; a PENDING one is re-checked with Hubtel (best effort)"""
    preapproval = _get(db, client_reference_id)
    if preapproval.status != "PENDING":
        return preapproval

    try:
        response = await gateway.get_preapproval_status(client_reference_id)
    except GatewayError as e:
        logger.warning(f"Preapproval status check failed: {e}", extra={"client_reference_id": client_reference_id})
        return preapproval

    if response.status in PREAPPROVAL_STATUSES and response.status != preapproval.status:
        PreapprovalRepository(db).update_status(preapproval, response.status, response.provider_preapproval_id)
        db.commit()
    return _get(db, client_reference_id)


async def cancel_preapproval(
    db: Session,
    gateway: HubtelClient,
    client_reference_id: str,
    context: audit.AuditContext | None = None,
) -> Preapproval:
    """
    Cancel an APPROVED or PENDING mandate with Hubtel.

    Raises:
        PreapprovalNotFoundError: Unknown reference
        PaymentValidationError: Mandate already closed
        GatewayError: Hubtel did not confirm the cancellation
    """
    preapproval = _get(db, client_reference_id)
    if preapproval.status not in ("APPROVED", "PENDING"):
        raise PaymentValidationError(f"Preapproval is already {preapproval.status.lower()}")

    old_status = preapproval.status
    if not await gateway.cancel_preapproval(preapproval.customer_msisdn):
        raise GatewayResponseError("Hubtel did not confirm the cancellation", ambiguous=False)

    PreapprovalRepository(db).update_status(preapproval, "CANCELLED")
    db.commit()

    audit.record_audit(
        db,
        audit.CANCEL_PREAPPROVAL,
        "HubtelPreapproval",
        client_reference_id,
        old_values={"status": old_status},
        new_values={"status": "CANCELLED"},
        context=context,
    )
    return _get(db, client_reference_id)
