"""Unit tests for payment failure notifications"""

import httpx
from datetime import datetime
from hirepay.infrastructure.clients.sms import SmsClient
from hirepay.infrastructure.database.models import NotificationLog
from hirepay.infrastructure.database.repositories import (
    DEFAULT_FAILURE_SMS_TEMPLATE,
    PaymentTransactionRepository,
    RetrySettingsRepository,
)
from hirepay.services.notifications import PaymentNotifier, render_failure_message


def test_render_all_placeholders():
    message = render_failure_message(
        "{customerName}|{amount}|{contractNumber}|{reason}|{nextRetryDate}|{transactionRef}",
        customer_name="Ama Mensah",
        amount_pesewas=50050,
        contract_number="CON2406ABC123",
        reason="insufficient funds",
        next_retry_at=datetime(2024, 6, 3, 9, 30),
        transaction_ref="TXN1",
    )

    assert message == "Ama Mensah|500.50|CON2406ABC123|insufficient funds|03/06/2024|TXN1"


def test_render_leaves_unknown_placeholders():
    message = render_failure_message(
        "Hi {customerName}, ref {unknown}", "Ama Mensah", 100, "CON1", "x", None, "TXN1"
    )

    assert message == "Hi Ama Mensah, ref {unknown}"


def test_render_default_template_when_missing():
    message = render_failure_message(None, "Kofi Boateng", 2000, "CON1", "x", None, "TXN1")

    assert message == DEFAULT_FAILURE_SMS_TEMPLATE.format(customerName="Kofi Boateng", amount="20.00")


def test_render_malformed_template_falls_back():
    message = render_failure_message("Oops {", "Kofi Boateng", 2000, "CON1", "x", None, "TXN1")

    assert message.startswith("Dear Kofi Boateng")


async def test_failure_sms_logged(db, contract):
    payment = PaymentTransactionRepository(db).create_pending(contract, 50000, "HUBTEL_REGULAR")
    db.commit()
    sent = []

    def handler(request):
        sent.append(request)
        return httpx.Response(200, json={"status": "1701"})

    notifier = PaymentNotifier(SmsClient(api_url="http://sms.test", transport=httpx.MockTransport(handler)), True)

    entry = await notifier.send_payment_failure(db, payment, "insufficient funds", None)

    assert len(sent) == 1
    assert entry.status == "SENT"
    assert entry.recipient == "233241234567"
    assert "Ama Mensah" in entry.message


async def test_sms_rejection_recorded_not_raised(db, contract):
    payment = PaymentTransactionRepository(db).create_pending(contract, 50000, "HUBTEL_REGULAR")
    db.commit()
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad key"}))
    notifier = PaymentNotifier(SmsClient(api_url="http://sms.test", transport=transport), True)

    entry = await notifier.send_payment_failure(db, payment, "insufficient funds", None)

    assert entry.status == "FAILED"
    assert entry.error_message


async def test_notifications_switched_off(db, contract):
    payment = PaymentTransactionRepository(db).create_pending(contract, 50000, "HUBTEL_REGULAR")
    RetrySettingsRepository(db).update({"send_sms_on_failure": False})
    db.commit()
    notifier = PaymentNotifier(SmsClient(api_url="http://sms.test"), True)

    assert await notifier.send_payment_failure(db, payment, "x", None) is None
    assert db.query(NotificationLog).count() == 0


async def test_sms_disabled_logs_skipped(db, contract):
    payment = PaymentTransactionRepository(db).create_pending(contract, 50000, "HUBTEL_REGULAR")
    db.commit()
    notifier = PaymentNotifier(SmsClient(api_url="http://sms.test"), sms_enabled=False)

    entry = await notifier.send_payment_failure(db, payment, "x", None)

    assert entry.status == "SKIPPED"
