"""Pytest fixtures for testing"""

import os

# Settings are read at import time; point them at the test database first
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SMS_ENABLED", "false")

import httpx
import pytest
from datetime import date, datetime, timedelta
from typing import Generator, Sequence
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from hirepay.api.dependencies import get_hubtel_client, get_notifier
from hirepay.api.main import create_app
from hirepay.domain.models import Installment as PlannedInstallment
from hirepay.infrastructure.clients.hubtel import HubtelClient, channel_for
from hirepay.infrastructure.clients.sms import SmsClient
from hirepay.infrastructure.database.models import Base, Customer, HirePurchaseContract, PaymentTransaction
from hirepay.infrastructure.database.repositories import (
    ContractRepository,
    CustomerRepository,
    PaymentTransactionRepository,
)
from hirepay.infrastructure.database.session import get_db
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.scheduler import JobLeaseGuard, PaymentScheduler
from mock_hubtel import main as mock_hubtel


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

HUBTEL_BASE = "http://hubtel.test"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mock_hubtel_state():
    """In-memory state of the mock Hubtel server, cleared around each test"""
    mock_hubtel.reset()
    yield mock_hubtel
    mock_hubtel.reset()


def make_gateway(transport: httpx.AsyncBaseTransport) -> HubtelClient:
    return HubtelClient(
        pos_sales_id="POS123",
        api_key="key",
        api_secret="secret",
        receive_money_base=HUBTEL_BASE,
        status_base=HUBTEL_BASE,
        preapproval_base=HUBTEL_BASE,
        callback_url="http://testserver/v1/callbacks/hubtel",
        timeout=5.0,
        transport=transport,
    )


@pytest.fixture
def gateway(mock_hubtel_state) -> HubtelClient:
    """Hubtel client wired to the mock Hubtel server in-process"""
    return make_gateway(httpx.ASGITransport(app=mock_hubtel_state.app))


@pytest.fixture
def notifier() -> PaymentNotifier:
    """Notifier whose SMS gateway always accepts"""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "1701"}))
    return PaymentNotifier(sms_client=SmsClient(api_url="http://sms.test/send", transport=transport), sms_enabled=True)


@pytest.fixture
def scheduler(db: Session, gateway: HubtelClient, notifier: PaymentNotifier) -> PaymentScheduler:
    return PaymentScheduler(
        TestingSessionLocal,
        gateway_factory=lambda: gateway,
        notifier=notifier,
        retry_interval_seconds=3600,
        overdue_interval_seconds=3600,
        guard=JobLeaseGuard(TestingSessionLocal, ttl_seconds=300),
    )


@pytest.fixture
def client(db: Session, gateway: HubtelClient, notifier: PaymentNotifier, scheduler: PaymentScheduler) -> TestClient:
    """Create FastAPI test client with test database and mock Hubtel"""
    app = create_app(scheduler=scheduler)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_hubtel_client] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def make_customer(db: Session):
    """Factory for committed customers"""

    def _make(phone: str = "233241234567", first_name: str = "Ama", last_name: str = "Mensah") -> Customer:
        customer = CustomerRepository(db).create_customer(first_name, last_name, phone, "ama@example.com")
        db.commit()
        return customer

    return _make


@pytest.fixture
def make_contract(db: Session):
    """Factory for committed contracts whose finance amount is the sum of the installments"""

    def _make(
        customer: Customer,
        installment_amounts: Sequence[int] = (50000, 50000),
        deposit_pesewas: int = 0,
        first_due: date | None = None,
        payment_method: str = "HUBTEL_REGULAR",
        grace_period_days: int = 0,
        penalty_percentage: float = 5.0,
        mobile_money_network: str | None = "MTN",
    ) -> HirePurchaseContract:
        first_due = first_due or date.today() + timedelta(days=30)
        plan = [
            PlannedInstallment(installment_no=i + 1, due_date=first_due + timedelta(days=30 * i), amount_pesewas=amount)
            for i, amount in enumerate(installment_amounts)
        ]
        contract = ContractRepository(db).create_contract(
            customer_id=customer.id,
            total_price_pesewas=deposit_pesewas + sum(installment_amounts),
            deposit_pesewas=deposit_pesewas,
            plan=plan,
            payment_frequency="MONTHLY",
            grace_period_days=grace_period_days,
            penalty_percentage=penalty_percentage,
            payment_method=payment_method,
            mobile_money_network=mobile_money_network,
            mobile_money_number=customer.phone,
        )
        db.commit()
        return contract

    return _make


@pytest.fixture
def customer(make_customer) -> Customer:
    return make_customer()


@pytest.fixture
def contract(make_contract, customer: Customer) -> HirePurchaseContract:
    """Finance 1000 GHS in two installments of 500 GHS"""
    return make_contract(customer)


@pytest.fixture
def session_factory() -> sessionmaker:
    """Factory for extra sessions, as background jobs open them"""
    return TestingSessionLocal


@pytest.fixture
def make_payment(db: Session):
    """Factory for committed gateway payments, PENDING or FAILED"""

    def _make(
        contract: HirePurchaseContract,
        amount_pesewas: int = 50000,
        failed: bool = False,
        next_retry_at: datetime | None = None,
        ambiguous: bool = False,
        retry_count: int = 0,
        ref_generator=None,
    ) -> PaymentTransaction:
        payments = PaymentTransactionRepository(db)
        kwargs = {"ref_generator": ref_generator} if ref_generator else {}
        payment = payments.create_pending(
            contract,
            amount_pesewas,
            contract.payment_method,
            {
                "provider": contract.mobile_money_network,
                "number": contract.mobile_money_number,
                "channel": channel_for(contract.mobile_money_network or "MTN"),
            },
            **kwargs,
        )
        payment.retry_count = retry_count
        db.flush()
        if failed:
            payments.mark_failed(payment.id, "Payment failed - insufficient funds", next_retry_at, ambiguous)
        db.commit()
        return payment

    return _make
