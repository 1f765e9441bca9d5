"""
E2E tests for hire-purchase payment flows through the API and the mock Hubtel server.

The mock Hubtel app runs in-process (httpx.ASGITransport); callbacks are
posted the way Hubtel would post them.

Flows:
- Customer pays in two parts, contract completes and ownership transfers
- Charge fails for lack of funds, admin retry succeeds on the retry reference,
  late and duplicate webhooks change nothing
- Late installment attracts a penalty that the next payment clears first
"""

import pytest
from unittest.mock import AsyncMock, patch
from datetime import date, timedelta
from fastapi.testclient import TestClient
from hirepay.domain.exceptions import GatewayTimeoutError
from hirepay.infrastructure.clients.hubtel import HubtelClient


def _hubtel_callback(client: TestClient, reference: str, code: str = "0000", amount: float | None = None):
    return client.post(
        "/v1/callbacks/hubtel",
        json={
            "ResponseCode": code,
            "Message": "success" if code == "0000" else "The customer has insufficient funds",
            "Data": {
                "ClientReference": reference,
                "TransactionId": f"HUB-{reference}",
                "ExternalTransactionId": f"EXT-{reference}",
                "Amount": amount,
                "Description": None if code == "0000" else "Insufficient funds",
            },
        },
    )


def _setup_contract(client: TestClient, phone: str = "0241234567") -> dict:
    customer = client.post("/v1/customers", json={"first_name": "Akosua", "last_name": "Owusu", "phone": phone})
    assert customer.status_code == 201

    contract = client.post(
        "/v1/contracts",
        json={
            "customer_id": customer.json()["id"],
            "total_price_pesewas": 120000,
            "deposit_pesewas": 20000,
            "total_installments": 2,
            "payment_frequency": "MONTHLY",
            "penalty_percentage": 5,
            "mobile_money_network": "MTN",
            "mobile_money_number": phone,
        },
    )
    assert contract.status_code == 201
    return contract.json()


@pytest.mark.integration
def test_pay_off_contract(client: TestClient):
    """
    Two payments settle by callback.
    Expected: installments PAID in order, contract COMPLETED, ownership transferred
    """
    contract = _setup_contract(client)

    first = client.post("/v1/payments", json={"contract_id": contract["id"], "amount_pesewas": 70000}).json()
    assert first["payment"]["status"] == "PENDING"
    assert _hubtel_callback(client, first["payment"]["transaction_ref"], amount=700.0).json()["outcome"] == "settled"

    state = client.get(f"/v1/contracts/{contract['id']}").json()
    assert state["total_paid_pesewas"] == 90000
    assert state["outstanding_balance_pesewas"] == 30000
    assert [i["status"] for i in state["installments"]] == ["PAID", "PARTIAL"]

    second = client.post("/v1/payments", json={"contract_id": contract["id"], "amount_pesewas": 30000}).json()
    _hubtel_callback(client, second["payment"]["transaction_ref"], amount=300.0)

    state = client.get(f"/v1/contracts/{contract['id']}").json()
    assert state["status"] == "COMPLETED"
    assert state["outstanding_balance_pesewas"] == 0
    assert state["ownership_transferred"] is True
    assert [i["status"] for i in state["installments"]] == ["PAID", "PAID"]

    # Nothing left to pay
    late = client.post("/v1/payments", json={"contract_id": contract["id"], "amount_pesewas": 100})
    assert late.status_code == 400
    assert client.get("/v1/admin/reconciliation").json()["contracts_with_discrepancies"] == 0


@pytest.mark.integration
def test_failed_charge_recovered_by_retry(client: TestClient):
    """
    Callback 2001 fails the charge; an admin retry goes out as <ref>-retry-1 and succeeds.
    Expected: one settlement, retry history closed, stale and duplicate webhooks ignored
    """
    contract = _setup_contract(client)
    payment = client.post("/v1/payments", json={"contract_id": contract["id"], "amount_pesewas": 50000}).json()["payment"]
    reference = payment["transaction_ref"]

    assert _hubtel_callback(client, reference, code="2001").json()["outcome"] == "failed"
    failed = client.get("/v1/admin/payments/failed").json()
    assert failed["total"] == 1
    assert failed["payments"][0]["next_retry_at"] is not None

    retry = client.post(f"/v1/admin/payments/{payment['id']}/retry").json()
    assert retry["status"] == "pending"
    assert retry["transaction_ref"] == f"{reference}-retry-1"

    # the original attempt's failure is redelivered while the retry is in flight
    assert _hubtel_callback(client, reference, code="2001").json()["outcome"] == "stale"

    assert _hubtel_callback(client, f"{reference}-retry-1", amount=500.0).json()["outcome"] == "settled"
    assert _hubtel_callback(client, f"{reference}-retry-1", amount=500.0).json()["outcome"] == "duplicate"

    status = client.get(f"/v1/payments/{reference}/status").json()
    assert status["status"] == "SUCCESS"
    assert status["retry_count"] == 1

    history = client.get(f"/v1/admin/payments/{payment['id']}/retries").json()
    assert [(r["attempt_number"], r["status"]) for r in history["retries"]] == [(1, "SUCCESS")]

    state = client.get(f"/v1/contracts/{contract['id']}").json()
    assert state["total_paid_pesewas"] == 70000
    assert client.get("/v1/admin/payments/failed").json()["total"] == 0


@pytest.mark.integration
def test_penalty_cleared_before_installment(client: TestClient):
    """
    Installment overdue past grace gets a 5% penalty.
    Expected: next payment pays the penalty first, the rest goes to installment #1
    """
    contract = _setup_contract(client)
    contract_id = contract["id"]

    # Backdate the schedule by creating the contract with a past start date
    customer_id = contract["customer_id"]
    backdated = client.post(
        "/v1/contracts",
        json={
            "customer_id": customer_id,
            "total_price_pesewas": 100000,
            "total_installments": 2,
            "start_date": (date.today() - timedelta(days=10)).isoformat(),
            "penalty_percentage": 5,
            "mobile_money_network": "MTN",
            "mobile_money_number": "0241234567",
        },
    ).json()

    sweep = client.post("/v1/admin/jobs/overdue-sweep").json()
    assert sweep["penalties_created"] == 1
    assert sweep["penalty_total_pesewas"] == 2500

    payment = client.post("/v1/payments", json={"contract_id": backdated["id"], "amount_pesewas": 30000}).json()
    _hubtel_callback(client, payment["payment"]["transaction_ref"], amount=300.0)

    state = client.get(f"/v1/contracts/{backdated['id']}").json()
    assert state["penalties"][0]["is_paid"] is True
    assert state["installments"][0]["paid_pesewas"] == 27500
    assert state["installments"][0]["status"] == "PARTIAL"
    assert state["total_paid_pesewas"] == 30000

    # the untouched contract has no penalties
    assert client.get(f"/v1/contracts/{contract_id}").json()["penalties"] == []


@pytest.mark.integration
def test_timed_out_charge_is_not_charged_twice(client: TestClient, mock_hubtel_state):
    """
    Hubtel takes the money but the initiation request times out.
    Expected: payment FAILED and ambiguous; the retry asks Hubtel first and
    settles the original attempt without sending a second charge
    """
    contract = _setup_contract(client)

    async def charge_then_time_out(self, amount_pesewas, phone, channel, reference, *args, **kwargs):
        mock_hubtel_state.TRANSACTIONS[reference] = {
            "status": "Paid",
            "transactionId": "HUB-LATE",
            "externalTransactionId": "EXT-LATE",
            "amount": amount_pesewas / 100,
            "msisdn": phone,
        }
        raise GatewayTimeoutError("Hubtel charge timeout after 5.0s")

    with patch.object(HubtelClient, "initiate_charge", new=charge_then_time_out):
        payment = client.post("/v1/payments", json={"contract_id": contract["id"], "amount_pesewas": 50000}).json()["payment"]

    assert payment["status"] == "FAILED"

    retry_charge = AsyncMock()
    with patch.object(HubtelClient, "initiate_charge", new=retry_charge):
        retry = client.post(f"/v1/admin/payments/{payment['id']}/retry").json()

    assert retry["status"] == "settled"
    retry_charge.assert_not_called()

    state = client.get(f"/v1/contracts/{contract['id']}").json()
    assert state["total_paid_pesewas"] == 70000
    assert client.get(f"/v1/payments/{payment['transaction_ref']}/status").json()["external_ref"] == "EXT-LATE"
