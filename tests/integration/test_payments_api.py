"""Integration tests for payment initiation, manual payments and status polling"""

import pytest
from hirepay.infrastructure.database.models import AuditLog, PaymentTransaction
from hirepay.infrastructure.database.repositories import PreapprovalRepository


def _initiate(client, contract, amount=50000, **extra):
    return client.post("/v1/payments", json={"contract_id": contract.id, "amount_pesewas": amount, **extra})


def test_initiate_payment_pending(client, db, contract, mock_hubtel_state):
    """Accepted charge stays PENDING until the callback arrives"""
    response = _initiate(client, contract, description="June installment")

    assert response.status_code == 201
    data = response.json()
    payment = data["payment"]
    assert payment["status"] == "PENDING"
    assert payment["transaction_ref"].startswith("TXN")
    assert payment["active_reference"] == payment["transaction_ref"]
    assert payment["channel"] == "mtn-gh"
    assert payment["mobile_money_number"] == "233241234567"
    assert payment["external_ref"]
    assert data["response_code"] == "0001"

    charge = mock_hubtel_state.TRANSACTIONS[payment["transaction_ref"]]
    assert charge["amount"] == 500.0
    assert db.query(AuditLog).filter(AuditLog.action == "INITIATE_PAYMENT").count() == 1


def test_initiate_payment_insufficient_funds(client, db, make_customer, make_contract):
    """Synchronous 2001 -> FAILED with next retry, not an HTTP error"""
    contract = make_contract(make_customer(phone="233241230000"))

    response = _initiate(client, contract)

    assert response.status_code == 201
    payment = response.json()["payment"]
    assert payment["status"] == "FAILED"
    assert payment["next_retry_at"] is not None
    assert payment["retry_count"] == 0

    row = db.get(PaymentTransaction, payment["id"])
    assert row.outcome_ambiguous is False


def test_initiate_payment_validation_rejection(client, make_customer, make_contract):
    contract = make_contract(make_customer(phone="233241234000"))

    payment = _initiate(client, contract).json()["payment"]

    assert payment["status"] == "FAILED"
    assert payment["failure_reason"] == "Validation error"


def test_initiate_payment_gateway_error_is_ambiguous(client, db, make_customer, make_contract):
    """HTTP 500 from Hubtel: FAILED, flagged so the retry checks status first"""
    contract = make_contract(make_customer(phone="233241235000"))

    payment = _initiate(client, contract).json()["payment"]

    assert payment["status"] == "FAILED"
    assert payment["failure_reason"].startswith("Gateway error")
    assert db.get(PaymentTransaction, payment["id"]).outcome_ambiguous is True


def test_initiate_payment_overpayment_rejected(client, db, contract):
    response = _initiate(client, contract, amount=100001)

    assert response.status_code == 400
    assert "outstanding balance" in response.json()["detail"]
    assert db.query(PaymentTransaction).count() == 0


def test_initiate_payment_unknown_contract(client):
    response = client.post("/v1/payments", json={"contract_id": "missing", "amount_pesewas": 100})

    assert response.status_code == 404


@pytest.mark.parametrize("amount", [0, -5])
def test_initiate_payment_non_positive_amount(client, contract, amount):
    assert _initiate(client, contract, amount=amount).status_code == 422


def test_initiate_payment_completed_contract(client, db, contract):
    contract.status = "COMPLETED"
    db.commit()

    response = _initiate(client, contract)

    assert response.status_code == 400


def test_initiate_payment_unsupported_network(client, contract):
    response = _initiate(client, contract, network="GLO")

    assert response.status_code == 400


def test_initiate_payment_phone_override(client, contract, mock_hubtel_state):
    payment = _initiate(client, contract, phone="0501234567", network="VODAFONE").json()["payment"]

    assert payment["channel"] == "vodafone-gh"
    assert mock_hubtel_state.TRANSACTIONS[payment["transaction_ref"]]["msisdn"] == "233501234567"


def test_direct_debit_requires_approved_mandate(client, db, customer, make_contract):
    contract = make_contract(customer, payment_method="HUBTEL_DIRECT_DEBIT")

    assert _initiate(client, contract).status_code == 400

    preapprovals = PreapprovalRepository(db)
    mandate = preapprovals.create(customer.id, customer.phone, "mtn-gh-direct-debit", "PREAPPR-1")
    preapprovals.update_status(mandate, "APPROVED")
    db.commit()

    response = _initiate(client, contract)

    assert response.status_code == 201
    assert response.json()["payment"]["channel"] == "mtn-gh-direct-debit"


def test_manual_payment_settles_immediately(client, db, contract):
    response = client.post(
        "/v1/payments/manual",
        json={"contract_id": contract.id, "amount_pesewas": 70000, "payment_method": "CASH", "reference": "RCPT-9"},
        headers={"X-User-ID": "admin-7"},
    )

    assert response.status_code == 201
    payment = response.json()
    assert payment["status"] == "SUCCESS"
    assert payment["payment_method"] == "CASH"
    assert payment["external_ref"] == "RCPT-9"

    db.expire_all()
    assert contract.total_paid_pesewas == 70000
    assert [i.status for i in contract.installments] == ["PAID", "PARTIAL"]
    [entry] = db.query(AuditLog).filter(AuditLog.action == "RECORD_MANUAL_PAYMENT").all()
    assert entry.user_id == "admin-7"


def test_manual_payment_rejects_gateway_method(client, contract):
    response = client.post(
        "/v1/payments/manual",
        json={"contract_id": contract.id, "amount_pesewas": 100, "payment_method": "HUBTEL_REGULAR"},
    )

    assert response.status_code == 400


def test_manual_payment_overpayment(client, contract):
    response = client.post(
        "/v1/payments/manual",
        json={"contract_id": contract.id, "amount_pesewas": 200000, "payment_method": "BANK_TRANSFER"},
    )

    assert response.status_code == 400


def test_status_poll_settles_paid_charge(client, db, contract, mock_hubtel_state):
    payment = _initiate(client, contract).json()["payment"]
    reference = payment["transaction_ref"]

    still_pending = client.get(f"/v1/payments/{reference}/status")
    assert still_pending.json()["status"] == "PENDING"

    mock_hubtel_state.TRANSACTIONS[reference]["status"] = "Paid"
    mock_hubtel_state.TRANSACTIONS[reference]["externalTransactionId"] = "EXT55"

    response = client.get(f"/v1/payments/{reference}/status")

    assert response.status_code == 200
    assert response.json()["status"] == "SUCCESS"
    assert response.json()["external_ref"] == "EXT55"
    db.expire_all()
    assert contract.total_paid_pesewas == 50000


def test_status_poll_marks_failed(client, db, contract, mock_hubtel_state):
    reference = _initiate(client, contract).json()["payment"]["transaction_ref"]
    mock_hubtel_state.TRANSACTIONS[reference]["status"] = "Failed"

    response = client.get(f"/v1/payments/{reference}/status")

    assert response.json()["status"] == "FAILED"
    assert response.json()["next_retry_at"] is not None


def test_status_unknown_reference(client):
    assert client.get("/v1/payments/TXNNOPE/status").status_code == 404
