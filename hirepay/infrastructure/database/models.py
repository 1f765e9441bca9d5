"""SQLAlchemy ORM models for contracts, payments and their sub-ledgers"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from hirepay.utils.date_utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Customer(Base):
    """Hire-purchase customer"""

    __tablename__ = "customer"

    id = Column(String(36), primary_key=True, default=_uuid)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    phone = Column(String(20), nullable=False, unique=True)
    email = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    contracts = relationship("HirePurchaseContract", back_populates="customer")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class HirePurchaseContract(Base):
    """One hire-purchase agreement and its running totals"""

    __tablename__ = "hire_purchase_contract"

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_number = Column(String(20), nullable=False, unique=True)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=False, index=True)
    total_price_pesewas = Column(BigInteger, nullable=False)
    deposit_pesewas = Column(BigInteger, nullable=False, default=0)
    finance_pesewas = Column(BigInteger, nullable=False)
    total_paid_pesewas = Column(BigInteger, nullable=False, default=0)
    outstanding_balance_pesewas = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    payment_frequency = Column(String(20), nullable=False, default="MONTHLY")
    total_installments = Column(Integer, nullable=False)
    grace_period_days = Column(Integer, nullable=False, default=0)
    penalty_percentage = Column(Float, nullable=False, default=0.0)
    payment_method = Column(String(30), nullable=False, default="HUBTEL_REGULAR")
    mobile_money_network = Column(String(20), nullable=True)
    mobile_money_number = Column(String(20), nullable=True)
    preapproval_client_reference = Column(Text, nullable=True)
    ownership_transferred = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="contracts")
    installments = relationship(
        "Installment",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="Installment.installment_no",
    )
    penalties = relationship(
        "Penalty",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="Penalty.created_at",
    )
    payments = relationship("PaymentTransaction", back_populates="contract")


class Installment(Base):
    """Scheduled repayment obligation"""

    __tablename__ = "installment"
    __table_args__ = (UniqueConstraint("contract_id", "installment_no", name="uq_installment_contract_no"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_id = Column(
        String(36), ForeignKey("hire_purchase_contract.id", ondelete="CASCADE"), nullable=False, index=True
    )
    installment_no = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount_pesewas = Column(BigInteger, nullable=False)
    paid_pesewas = Column(BigInteger, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="PENDING")
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    contract = relationship("HirePurchaseContract", back_populates="installments")


class Penalty(Base):
    """Late fee, senior to installment debt"""

    __tablename__ = "penalty"

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_id = Column(
        String(36), ForeignKey("hire_purchase_contract.id", ondelete="CASCADE"), nullable=False, index=True
    )
    installment_id = Column(String(36), ForeignKey("installment.id"), nullable=True)
    amount_pesewas = Column(BigInteger, nullable=False)
    reason = Column(Text, nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    contract = relationship("HirePurchaseContract", back_populates="penalties")


class PaymentTransaction(Base):
    """One logical payment and the state of its latest attempt"""

    __tablename__ = "payment_transaction"

    id = Column(String(36), primary_key=True, default=_uuid)
    transaction_ref = Column(String(64), nullable=False, unique=True)
    active_reference = Column(String(80), nullable=False, index=True)
    contract_id = Column(String(36), ForeignKey("hire_purchase_contract.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=False, index=True)
    amount_pesewas = Column(BigInteger, nullable=False)
    payment_method = Column(String(30), nullable=False)
    mobile_money_provider = Column(String(20), nullable=True)
    mobile_money_number = Column(String(20), nullable=True)
    channel = Column(String(40), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    external_ref = Column(Text, nullable=True)
    payment_date = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    last_retry_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    auto_retry_enabled = Column(Boolean, nullable=False, default=True)
    outcome_ambiguous = Column(Boolean, nullable=False, default=False)
    unapplied_pesewas = Column(BigInteger, nullable=False, default=0)
    allocated_at = Column(DateTime, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    contract = relationship("HirePurchaseContract", back_populates="payments")
    customer = relationship("Customer")
    retries = relationship(
        "PaymentRetry",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentRetry.attempt_number",
    )


class PaymentRetry(Base):
    """Append-only record of one retry attempt"""

    __tablename__ = "payment_retry"
    __table_args__ = (UniqueConstraint("payment_id", "attempt_number", name="uq_payment_retry_attempt"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_id = Column(
        String(36), ForeignKey("payment_transaction.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_number = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    transaction_ref = Column(String(80), nullable=False, unique=True)
    external_ref = Column(Text, nullable=True)
    response_code = Column(String(20), nullable=True)
    response_message = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    attempted_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    payment = relationship("PaymentTransaction", back_populates="retries")


class RetrySettings(Base):
    """Process-wide retry configuration (single row)"""

    __tablename__ = "retry_settings"

    id = Column(Integer, primary_key=True, default=1)
    enable_auto_retry = Column(Boolean, nullable=False, default=True)
    max_retry_attempts = Column(Integer, nullable=False, default=3)
    retry_interval_hours = Column(Integer, nullable=False, default=24)
    retry_schedule = Column(Text, nullable=False, default="1,3,7")
    notify_on_failure = Column(Boolean, nullable=False, default=True)
    notify_customer_on_failure = Column(Boolean, nullable=False, default=True)
    send_sms_on_failure = Column(Boolean, nullable=False, default=True)
    failure_sms_template = Column(Text, nullable=True)
    updated_by = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    """Immutable record of a state change"""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=True)
    action = Column(String(60), nullable=False, index=True)
    entity = Column(String(60), nullable=False)
    entity_id = Column(Text, nullable=True, index=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class NotificationLog(Base):
    """Outbound customer notification and its delivery result"""

    __tablename__ = "notification_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=True, index=True)
    contract_id = Column(String(36), ForeignKey("hire_purchase_contract.id"), nullable=True)
    type = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    recipient = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow)


class Preapproval(Base):
    """Direct debit mandate"""

    __tablename__ = "hubtel_preapproval"

    id = Column(String(36), primary_key=True, default=_uuid)
    customer_id = Column(String(36), ForeignKey("customer.id"), nullable=False, index=True)
    customer_msisdn = Column(String(20), nullable=False, index=True)
    channel = Column(String(40), nullable=False)
    client_reference_id = Column(String(80), nullable=False, unique=True)
    provider_preapproval_id = Column(Text, nullable=True)
    verification_type = Column(String(10), nullable=True)
    otp_prefix = Column(String(10), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING")
    approved_at = Column(DateTime, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer")


class JobLease(Base):
    """Singleton-job lease, taken by compare-and-swap"""

    __tablename__ = "job_lease"

    job_name = Column(String(60), primary_key=True)
    holder = Column(String(64), nullable=True)
    acquired_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
