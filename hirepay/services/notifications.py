"""Customer notifications for failed payments"""

import logging
from datetime import datetime
from typing import Optional
import httpx
from sqlalchemy.orm import Session
from hirepay.config import settings
from hirepay.infrastructure.clients.hubtel import format_phone, pesewas_to_cedis
from hirepay.infrastructure.clients.sms import SmsClient
from hirepay.infrastructure.database.models import NotificationLog, PaymentTransaction
from hirepay.infrastructure.database.repositories import (
    DEFAULT_FAILURE_SMS_TEMPLATE,
    NotificationLogRepository,
    RetrySettingsRepository,
)

logger = logging.getLogger(__name__)

PAYMENT_FAILURE = "PAYMENT_FAILURE"


class _TemplateValues(dict):
    """Leaves unknown placeholders untouched"""

    def __missing__(self, key):
        return "{" + key + "}"


def render_failure_message(
    template: str | None,
    customer_name: str,
    amount_pesewas: int,
    contract_number: str,
    reason: str,
    next_retry_at: datetime | None,
    transaction_ref: str,
) -> str:
    """
    Fill the SMS template.

    Placeholders: {customerName} {amount} {contractNumber} {reason}
    {nextRetryDate} {transactionRef}. A malformed template falls back to
    the default one.
    """
    values = _TemplateValues(
        customerName=customer_name,
        amount=str(pesewas_to_cedis(amount_pesewas)),
        contractNumber=contract_number,
        reason=reason,
        nextRetryDate=next_retry_at.strftime("%d/%m/%Y") if next_retry_at else "",
        transactionRef=transaction_ref,
    )
    try:
        return (template or DEFAULT_FAILURE_SMS_TEMPLATE).format_map(values)
    except (ValueError, IndexError, AttributeError):
        logger.warning("Invalid failure SMS template, using default")
        return DEFAULT_FAILURE_SMS_TEMPLATE.format_map(values)


class PaymentNotifier:
    """Sends payment failure SMS and records every attempt in the notification log"""

    def __init__(self, sms_client: SmsClient | None = None, sms_enabled: bool | None = None):
        self.sms_client = sms_client or SmsClient()
        self.sms_enabled = settings.sms_enabled if sms_enabled is None else sms_enabled

    async def send_payment_failure(
        self,
        db: Session,
        payment: PaymentTransaction,
        reason: str,
        next_retry_at: datetime | None,
    ) -> Optional[NotificationLog]:
        """
        Notify the customer that a charge failed.

        Returns None when notifications are switched off in the retry
        settings. SMS delivery errors end up in the log row, not raised.
        """
        retry_settings = RetrySettingsRepository(db).get_or_create()
        if not (retry_settings.notify_customer_on_failure and retry_settings.send_sms_on_failure):
            return None

        customer = payment.customer
        contract = payment.contract
        message = render_failure_message(
            retry_settings.failure_sms_template,
            customer_name=customer.full_name,
            amount_pesewas=payment.amount_pesewas,
            contract_number=contract.contract_number,
            reason=reason,
            next_retry_at=next_retry_at,
            transaction_ref=payment.transaction_ref,
        )
        recipient = format_phone(customer.phone)

        status, error_message = "SENT", None
        if not self.sms_enabled:
            status, error_message = "SKIPPED", "SMS disabled"
        else:
            try:
                await self.sms_client.send(recipient, message)
            except httpx.HTTPError as e:
                status, error_message = "FAILED", str(e)
                logger.warning(
                    f"Payment failure SMS not delivered: {e}",
                    extra={"payment_id": payment.id, "transaction_ref": payment.transaction_ref},
                )

        entry = NotificationLogRepository(db).create(
            type=PAYMENT_FAILURE,
            status=status,
            message=message,
            recipient=recipient,
            customer_id=customer.id,
            contract_id=contract.id,
            error_message=error_message,
        )
        db.commit()
        return entry

    async def notify_failure(
        self,
        db: Session,
        payment: PaymentTransaction,
        reason: str,
        next_retry_at: datetime | None,
    ) -> None:
        """Fire-and-forget wrapper: the payment flow never sees notification errors"""
        try:
            await self.send_payment_failure(db, payment, reason, next_retry_at)
        except Exception:
            db.rollback()
            logger.exception(
                "Payment failure notification error",
                extra={"payment_id": payment.id, "transaction_ref": payment.transaction_ref},
            )
