"""Integration tests for customers and contracts"""

from hirepay.infrastructure.database.models import AuditLog


def test_create_customer_normalizes_phone(client):
    response = client.post(
        "/v1/customers", json={"first_name": "Kofi", "last_name": "Boateng", "phone": "024 555 1234"}
    )

    assert response.status_code == 201
    assert response.json()["phone"] == "233245551234"


def test_duplicate_customer_phone(client, customer):
    response = client.post("/v1/customers", json={"first_name": "A", "last_name": "B", "phone": "0241234567"})

    assert response.status_code == 409


def test_create_contract_with_schedule(client, db, customer):
    response = client.post(
        "/v1/contracts",
        json={
            "customer_id": customer.id,
            "total_price_pesewas": 130003,
            "deposit_pesewas": 30000,
            "total_installments": 4,
            "payment_frequency": "WEEKLY",
            "start_date": "2024-07-01",
            "penalty_percentage": 5,
            "mobile_money_network": "mtn",
            "mobile_money_number": "0241234567",
        },
        headers={"X-User-ID": "clerk-2"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["contract_number"].startswith("CON")
    assert data["finance_pesewas"] == 100003
    assert data["total_paid_pesewas"] == 30000
    assert data["outstanding_balance_pesewas"] == 100003
    assert data["status"] == "ACTIVE"
    assert data["mobile_money_network"] == "MTN"
    assert data["mobile_money_number"] == "233241234567"
    assert [i["amount_pesewas"] for i in data["installments"]] == [25000, 25000, 25000, 25003]
    assert [i["due_date"] for i in data["installments"]] == ["2024-07-01", "2024-07-08", "2024-07-15", "2024-07-22"]

    [entry] = db.query(AuditLog).filter(AuditLog.action == "CREATE_CONTRACT").all()
    assert entry.user_id == "clerk-2"


def test_create_contract_deposit_not_below_price(client, customer):
    response = client.post(
        "/v1/contracts",
        json={"customer_id": customer.id, "total_price_pesewas": 1000, "deposit_pesewas": 1000, "total_installments": 2},
    )

    assert response.status_code == 422


def test_create_contract_unknown_customer(client):
    response = client.post(
        "/v1/contracts", json={"customer_id": "missing", "total_price_pesewas": 1000, "total_installments": 2}
    )

    assert response.status_code == 404


def test_create_contract_unsupported_network(client, customer):
    response = client.post(
        "/v1/contracts",
        json={
            "customer_id": customer.id,
            "total_price_pesewas": 1000,
            "total_installments": 2,
            "mobile_money_network": "GLO",
        },
    )

    assert response.status_code == 400


def test_get_contract(client, contract):
    response = client.get(f"/v1/contracts/{contract.id}")

    assert response.status_code == 200
    assert len(response.json()["installments"]) == 2
    assert response.json()["penalties"] == []


def test_get_contract_not_found(client):
    assert client.get("/v1/contracts/missing").status_code == 404
    assert client.get("/v1/contracts/missing/payments").status_code == 404


def test_contract_payments(client, contract, make_payment):
    make_payment(contract, 1000)
    make_payment(contract, 2000)

    response = client.get(f"/v1/contracts/{contract.id}/payments")

    assert sorted(p["amount_pesewas"] for p in response.json()) == [1000, 2000]
