"""Payment initiation, manual payments and status refresh"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from hirepay.domain.exceptions import (
    ContractNotActiveError,
    ContractNotFoundError,
    GatewayError,
    OverpaymentError,
    PaymentNotFoundError,
    PaymentValidationError,
    UnsupportedNetworkError,
)
from hirepay.domain.models import ContractStatus, PaymentMethod, PaymentStatus, ProviderOutcome
from hirepay.domain.provider_codes import failure_message
from hirepay.domain.retry_policy import next_retry_from_settings
from hirepay.infrastructure.clients.hubtel import HubtelClient, channel_for, format_phone, network_from_phone
from hirepay.infrastructure.database.models import HirePurchaseContract, PaymentTransaction, RetrySettings
from hirepay.infrastructure.database.repositories import (
    ContractRepository,
    PaymentRetryRepository,
    PaymentTransactionRepository,
    PreapprovalRepository,
    RetrySettingsRepository,
)
from hirepay.infrastructure.observability.logging import log_payment_event
from hirepay.infrastructure.observability.metrics import payment_initiation_counter
from hirepay.services import audit
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.settlement import apply_successful_payment
from hirepay.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

GATEWAY_METHODS = (PaymentMethod.HUBTEL_REGULAR.value, PaymentMethod.HUBTEL_DIRECT_DEBIT.value)
MANUAL_METHODS = (PaymentMethod.CASH.value, PaymentMethod.BANK_TRANSFER.value)


@dataclass
class PaymentRequest:
    contract_id: str
    amount_pesewas: int
    phone: Optional[str] = None
    network: Optional[str] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ManualPaymentRequest:
    contract_id: str
    amount_pesewas: int
    payment_method: str = PaymentMethod.CASH.value
    payment_date: Optional[datetime] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ChargeAttempt:
    """Result of one call to the gateway for a payment"""

    status: PaymentStatus
    outcome: Optional[ProviderOutcome]
    message: str
    response_code: Optional[str] = None
    external_ref: Optional[str] = None
    ambiguous: bool = False
    next_retry_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == PaymentStatus.FAILED


def validate_amount(contract: HirePurchaseContract, amount_pesewas: int) -> None:
    """
    Raises:
        ContractNotActiveError: Contract is not ACTIVE
        PaymentValidationError: Non-positive amount
        OverpaymentError: Amount above the outstanding balance
    """
    if contract.status != ContractStatus.ACTIVE.value:
        raise ContractNotActiveError(f"Contract {contract.contract_number} is {contract.status}")
    if amount_pesewas <= 0:
        raise PaymentValidationError("Payment amount must be positive")
    if amount_pesewas > contract.outstanding_balance_pesewas:
        raise OverpaymentError(
            f"Payment of {amount_pesewas} pesewas exceeds outstanding balance "
            f"of {contract.outstanding_balance_pesewas} pesewas"
        )


def _load_contract(db: Session, contract_id: str) -> HirePurchaseContract:
    contract = ContractRepository(db).get_by_id(contract_id)
    if contract is None:
        raise ContractNotFoundError(f"Contract {contract_id} not found")
    return contract


async def execute_charge(
    db: Session,
    gateway: HubtelClient,
    payment: PaymentTransaction,
    reference: str,
    retry_settings: RetrySettings,
    now: datetime | None = None,
) -> ChargeAttempt:
    """
    Send the charge for the attempt currently in flight and record the answer.

    Accepted (or undecodable code) -> stays PENDING awaiting the callback.
    Rejected or gateway error -> FAILED with the next retry time taken from
    the settings and the payment's current retry count. Gateway errors never
    escape: they become FAILED state with outcome_ambiguous set when the
    provider may have acted on the request.

    The state change is committed before returning.
    """
    payments = PaymentTransactionRepository(db)
    payment_id = payment.id
    retry_count = payment.retry_count
    contract = payment.contract
    customer = payment.customer

    try:
        response = await gateway.initiate_charge(
            amount_pesewas=payment.amount_pesewas,
            phone=payment.mobile_money_number,
            channel=payment.channel,
            reference=reference,
            description=f"Hire purchase payment - {contract.contract_number}",
            customer_name=customer.full_name,
            customer_email=customer.email,
        )
    except GatewayError as e:
        next_retry_at = next_retry_from_settings(retry_settings, retry_count, now)
        reason = f"Gateway error: {e}"
        payments.mark_failed(payment_id, reason, next_retry_at, ambiguous=e.ambiguous)
        db.commit()
        payment_initiation_counter.labels(outcome="gateway_error").inc()
        logger.warning(
            reason,
            extra={"payment_id": payment_id, "transaction_ref": reference, "ambiguous": e.ambiguous},
        )
        return ChargeAttempt(
            status=PaymentStatus(payment.status),
            outcome=None,
            message=str(e),
            ambiguous=e.ambiguous,
            next_retry_at=next_retry_at,
        )

    initiation = {
        "initiation": {
            "reference": reference,
            "response_code": response.response_code,
            "message": response.message,
            "external_ref": response.external_ref,
        }
    }

    if response.outcome.is_failure:
        next_retry_at = next_retry_from_settings(retry_settings, retry_count, now)
        reason = failure_message(response.outcome, response.message)
        payments.mark_failed(payment_id, reason, next_retry_at)
        payments.annotate(payment_id, initiation)
        db.commit()
        payment_initiation_counter.labels(outcome="failed").inc()
        return ChargeAttempt(
            status=PaymentStatus(payment.status),
            outcome=response.outcome,
            message=reason,
            response_code=response.response_code,
            external_ref=response.external_ref,
            next_retry_at=next_retry_at,
            raw=response.raw,
        )

    if response.outcome == ProviderOutcome.UNKNOWN_CODE:
        logger.warning(
            f"Unknown Hubtel initiation code {response.response_code}, awaiting callback",
            extra={"payment_id": payment_id, "transaction_ref": reference},
        )
    payments.record_initiation(payment_id, response.external_ref, initiation)
    db.commit()
    payment_initiation_counter.labels(outcome="pending").inc()
    return ChargeAttempt(
        status=PaymentStatus(payment.status),
        outcome=response.outcome,
        message=response.message,
        response_code=response.response_code,
        external_ref=response.external_ref,
        raw=response.raw,
    )


async def initiate_payment(
    db: Session,
    gateway: HubtelClient,
    request: PaymentRequest,
    context: audit.AuditContext | None = None,
) -> tuple[PaymentTransaction, ChargeAttempt]:
    """
    Charge a customer's mobile money wallet for a contract.

    Flow:
    1. Validate contract, amount, phone and network
    2. Persist a PENDING transaction (committed before the gateway call so
       an early callback can find it)
    3. Initiate the charge and record the provider answer

    Raises:
        ContractNotFoundError, ContractNotActiveError, OverpaymentError,
        PaymentValidationError, UnsupportedNetworkError: Nothing persisted
    """
    contract = _load_contract(db, request.contract_id)
    validate_amount(contract, request.amount_pesewas)

    method = request.payment_method or contract.payment_method
    if method not in GATEWAY_METHODS:
        raise PaymentValidationError(f"Contract is paid by {method}; record the payment manually")
    is_direct_debit = method == PaymentMethod.HUBTEL_DIRECT_DEBIT.value

    phone = request.phone or contract.mobile_money_number or contract.customer.phone
    msisdn = format_phone(phone or "")
    if len(msisdn) != 12 or not msisdn.isdigit():
        raise PaymentValidationError(f"Invalid mobile money number: {phone!r}")

    network = request.network or contract.mobile_money_network or network_from_phone(msisdn)
    if network is None:
        raise UnsupportedNetworkError(f"Cannot determine mobile network for {msisdn}")
    network = network.upper()
    channel = channel_for(network, is_direct_debit)

    if is_direct_debit and PreapprovalRepository(db).get_approved(contract.customer_id, msisdn) is None:
        raise PaymentValidationError("No approved direct debit mandate for this number")

    retry_settings = RetrySettingsRepository(db).get_or_create()
    payments = PaymentTransactionRepository(db)
    payment = payments.create_pending(
        contract,
        request.amount_pesewas,
        method,
        {"provider": network, "number": msisdn, "channel": channel},
        auto_retry_enabled=retry_settings.enable_auto_retry,
        metadata={"description": request.description} if request.description else None,
    )
    payment_id, reference = payment.id, payment.transaction_ref
    db.commit()

    attempt = await execute_charge(db, gateway, payment, reference, retry_settings)

    log_payment_event(
        "payment_initiated",
        transaction_ref=reference,
        payment_id=payment_id,
        contract_id=contract.id,
        status=attempt.status.value,
        amount_pesewas=request.amount_pesewas,
        channel=channel,
    )
    audit.record_audit(
        db,
        audit.INITIATE_PAYMENT,
        "PaymentTransaction",
        payment_id,
        new_values={
            "transaction_ref": reference,
            "contract_id": contract.id,
            "amount_pesewas": request.amount_pesewas,
            "payment_method": method,
            "channel": channel,
            "status": attempt.status.value,
            "message": attempt.message,
        },
        context=context,
    )
    return payments.get_by_id(payment_id), attempt


def record_manual_payment(
    db: Session,
    request: ManualPaymentRequest,
    context: audit.AuditContext | None = None,
) -> PaymentTransaction:
    """
    Record a cash or bank payment taken by an admin and settle it at once.

    The PENDING row and its settlement are committed together.

    Raises:
        ContractNotFoundError, ContractNotActiveError, OverpaymentError,
        PaymentValidationError
    """
    if request.payment_method not in MANUAL_METHODS:
        raise PaymentValidationError(f"Manual payments must be one of {', '.join(MANUAL_METHODS)}")

    contract = _load_contract(db, request.contract_id)
    validate_amount(contract, request.amount_pesewas)

    payments = PaymentTransactionRepository(db)
    metadata = {"manual": True, "reference": request.reference, "notes": request.notes}
    payment = payments.create_pending(
        contract,
        request.amount_pesewas,
        request.payment_method,
        auto_retry_enabled=False,
        metadata=metadata,
    )
    payment_id = payment.id

    apply_successful_payment(
        db,
        payment_id,
        external_ref=request.reference,
        payment_date=request.payment_date or utcnow(),
        source="manual",
    )

    audit.record_audit(
        db,
        audit.RECORD_MANUAL_PAYMENT,
        "PaymentTransaction",
        payment_id,
        new_values={
            "contract_id": request.contract_id,
            "amount_pesewas": request.amount_pesewas,
            "payment_method": request.payment_method,
            "reference": request.reference,
        },
        context=context,
    )
    return payments.get_by_id(payment_id)


def finalize_retry_attempt(db: Session, reference: str, status: PaymentStatus, **details) -> None:
    """Close the PaymentRetry row of an in-flight retry attempt, if the reference is one"""
    PaymentRetryRepository(db).complete(reference, status.value, **details)


async def refresh_payment_status(
    db: Session,
    gateway: HubtelClient,
    reference: str,
    notifier: PaymentNotifier | None = None,
) -> PaymentTransaction:
    """
    Poll the provider for a PENDING gateway payment.

    SUCCESS settles through the common settlement path, a definitive failure
    marks the payment FAILED with its next retry. Anything else (still
    processing, unknown to the provider, gateway unreachable) leaves the
    payment untouched.

    Raises:
        PaymentNotFoundError: No payment with this reference
    """
    payments = PaymentTransactionRepository(db)
    payment = payments.get_by_reference(reference)
    if payment is None:
        raise PaymentNotFoundError(f"Payment {reference} not found")

    if payment.status != PaymentStatus.PENDING.value or payment.payment_method not in GATEWAY_METHODS:
        return payment

    payment_id, active_reference = payment.id, payment.active_reference
    try:
        status = await gateway.query_status(active_reference)
    except GatewayError as e:
        logger.warning(f"Status check failed: {e}", extra={"payment_id": payment_id, "transaction_ref": active_reference})
        return payment

    if not status.found:
        return payment

    if status.outcome == ProviderOutcome.SUCCESS:
        result = apply_successful_payment(
            db,
            payment_id,
            external_ref=status.external_ref,
            metadata={"status_check": status.raw, "settled_reference": active_reference},
            source="status_poll",
        )
        if result.settled:
            finalize_retry_attempt(db, active_reference, PaymentStatus.SUCCESS, external_ref=status.external_ref)
            db.commit()
    elif status.outcome.is_failure:
        retry_settings = RetrySettingsRepository(db).get_or_create()
        next_retry_at = next_retry_from_settings(retry_settings, payment.retry_count)
        reason = failure_message(status.outcome, f"Provider reported status {status.provider_status}")
        if payments.mark_failed(payment_id, reason, next_retry_at):
            payments.annotate(payment_id, {"status_check": status.raw})
            finalize_retry_attempt(db, active_reference, PaymentStatus.FAILED, failure_reason=reason)
            db.commit()
            log_payment_event(
                "payment_failed",
                transaction_ref=active_reference,
                payment_id=payment_id,
                status=PaymentStatus.FAILED.value,
                source="status_poll",
            )
            if notifier is not None:
                await notifier.notify_failure(db, payments.get_by_id(payment_id), reason, next_retry_at)
        else:
            db.rollback()

    return payments.get_by_id(payment_id)
