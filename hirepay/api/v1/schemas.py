"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from hirepay.domain.models import CallbackEvent, PaymentFrequency, PaymentMethod, PreapprovalEvent


# Customers and contracts


class CustomerCreateRequest(BaseModel):
    """Request body for POST /v1/customers"""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=9, max_length=20)
    email: Optional[str] = None


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None


class ContractCreateRequest(BaseModel):
    """Request body for POST /v1/contracts"""

    customer_id: str = Field(..., min_length=1)
    total_price_pesewas: int = Field(..., gt=0, description="Total price in pesewas")
    deposit_pesewas: int = Field(0, ge=0, description="Deposit paid up front in pesewas")
    total_installments: int = Field(..., gt=0, le=520)
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY
    start_date: Optional[date] = Field(None, description="First due date (default: one period from today)")
    grace_period_days: int = Field(0, ge=0, le=90)
    penalty_percentage: float = Field(0.0, ge=0, le=100)
    payment_method: PaymentMethod = PaymentMethod.HUBTEL_REGULAR
    mobile_money_network: Optional[str] = None
    mobile_money_number: Optional[str] = None

    @model_validator(mode="after")
    def deposit_below_price(self):
        if self.deposit_pesewas >= self.total_price_pesewas:
            raise ValueError("Deposit must be less than the total price")
        return self


class InstallmentSchema(BaseModel):
    """Single installment in a repayment plan"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    installment_no: int
    due_date: date
    amount_pesewas: int
    paid_pesewas: int
    status: str
    paid_at: Optional[datetime] = None


class PenaltySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    installment_id: Optional[str] = None
    amount_pesewas: int
    reason: str
    is_paid: bool
    paid_at: Optional[datetime] = None
    created_at: datetime


class ContractResponse(BaseModel):
    """Response for GET /v1/contracts/{contract_id}"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    contract_number: str
    customer_id: str
    total_price_pesewas: int
    deposit_pesewas: int
    finance_pesewas: int
    total_paid_pesewas: int
    outstanding_balance_pesewas: int
    status: str
    payment_frequency: str
    total_installments: int
    grace_period_days: int
    penalty_percentage: float
    payment_method: str
    mobile_money_network: Optional[str] = None
    mobile_money_number: Optional[str] = None
    ownership_transferred: bool
    created_at: datetime
    installments: List[InstallmentSchema] = []
    penalties: List[PenaltySchema] = []


# Payments


class PaymentInitiateRequest(BaseModel):
    """Request body for POST /v1/payments"""

    contract_id: str = Field(..., min_length=1)
    amount_pesewas: int = Field(..., gt=0, description="Amount to charge in pesewas")
    phone: Optional[str] = Field(None, description="Wallet number (default: the contract's)")
    network: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    description: Optional[str] = Field(None, max_length=200)


class ManualPaymentRequest(BaseModel):
    """Request body for POST /v1/payments/manual"""

    contract_id: str = Field(..., min_length=1)
    amount_pesewas: int = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[datetime] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_ref: str
    active_reference: str
    contract_id: str
    customer_id: str
    amount_pesewas: int
    payment_method: str
    mobile_money_provider: Optional[str] = None
    mobile_money_number: Optional[str] = None
    channel: Optional[str] = None
    status: str
    external_ref: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    retry_count: int
    next_retry_at: Optional[datetime] = None
    unapplied_pesewas: int = 0
    created_at: datetime


class PaymentInitiateResponse(BaseModel):
    """Response for POST /v1/payments"""

    payment: PaymentResponse
    message: str
    response_code: Optional[str] = None


# Callbacks


class HubtelCallbackData(BaseModel):
    model_config = ConfigDict(extra="allow")

    client_reference: Optional[str] = Field(
        None, validation_alias=AliasChoices("ClientReference", "clientReference")
    )
    transaction_id: Optional[str] = Field(None, validation_alias=AliasChoices("TransactionId", "transactionId"))
    external_transaction_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("ExternalTransactionId", "externalTransactionId")
    )
    amount: Optional[float] = Field(None, validation_alias=AliasChoices("Amount", "amount"))
    payment_date: Optional[str] = Field(None, validation_alias=AliasChoices("PaymentDate", "paymentDate"))
    description: Optional[str] = Field(None, validation_alias=AliasChoices("Description", "description"))

    @field_validator("client_reference", "transaction_id", "external_transaction_id", "payment_date", mode="before")
    @classmethod
    def as_text(cls, value):
        return None if value is None else str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def lenient_amount(cls, value):
        # amount is informational; a malformed one must not drop the callback
        try:
            return None if value is None else float(value)
        except (TypeError, ValueError):
            return None


class HubtelCallbackRequest(BaseModel):
    """Body Hubtel posts to the payment callback URL"""

    model_config = ConfigDict(extra="allow")

    response_code: Optional[str] = Field(None, validation_alias=AliasChoices("ResponseCode", "responseCode"))
    message: Optional[str] = Field(None, validation_alias=AliasChoices("Message", "message"))
    data: HubtelCallbackData = Field(
        default_factory=HubtelCallbackData, validation_alias=AliasChoices("Data", "data")
    )

    @field_validator("response_code", mode="before")
    @classmethod
    def code_as_text(cls, value):
        return None if value is None else str(value)

    @field_validator("data", mode="before")
    @classmethod
    def empty_data(cls, value):
        return value or {}

    def to_event(self, raw: Dict[str, Any]) -> CallbackEvent:
        return CallbackEvent(
            response_code=self.response_code,
            message=self.message or "",
            client_reference=self.data.client_reference,
            transaction_id=self.data.transaction_id,
            external_transaction_id=self.data.external_transaction_id,
            amount=self.data.amount,
            payment_date=self.data.payment_date,
            description=self.data.description,
            raw=raw,
        )


class PreapprovalCallbackRequest(BaseModel):
    """Body Hubtel posts when a direct debit mandate changes state"""

    model_config = ConfigDict(extra="allow")

    client_reference_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientReferenceId", "ClientReferenceId")
    )
    preapproval_status: Optional[str] = Field(
        None, validation_alias=AliasChoices("preapprovalStatus", "PreapprovalStatus")
    )
    provider_preapproval_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("hubtelPreApprovalId", "hubtelPreapprovalId", "HubtelPreapprovalId")
    )
    customer_msisdn: Optional[str] = Field(None, validation_alias=AliasChoices("customerMsisdn", "CustomerMsisdn"))
    verification_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("verificationType", "VerificationType")
    )

    @field_validator("client_reference_id", "provider_preapproval_id", "customer_msisdn", mode="before")
    @classmethod
    def as_text(cls, value):
        return None if value is None else str(value)

    def to_event(self, raw: Dict[str, Any]) -> PreapprovalEvent:
        return PreapprovalEvent(
            client_reference_id=self.client_reference_id,
            preapproval_status=self.preapproval_status,
            provider_preapproval_id=self.provider_preapproval_id,
            customer_msisdn=self.customer_msisdn,
            verification_type=self.verification_type,
            raw=raw,
        )


class CallbackAck(BaseModel):
    received: bool = True
    outcome: str


# Preapprovals


class PreapprovalInitiateRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=9, max_length=20)
    network: str = Field(..., min_length=1)


class PreapprovalVerifyRequest(BaseModel):
    client_reference_id: str = Field(..., min_length=1)
    otp_code: str = Field(..., min_length=4, max_length=10)


class PreapprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_reference_id: str
    customer_id: str
    customer_msisdn: str
    channel: str
    status: str
    verification_type: Optional[str] = None
    otp_prefix: Optional[str] = None
    approved_at: Optional[datetime] = None
    message: Optional[str] = None


# Admin


class RetrySettingsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enable_auto_retry: bool
    max_retry_attempts: int
    retry_interval_hours: int
    retry_schedule: str
    notify_on_failure: bool
    notify_customer_on_failure: bool
    send_sms_on_failure: bool
    failure_sms_template: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class RetrySettingsUpdate(BaseModel):
    """Partial update; ranges are checked by the retry policy"""

    enable_auto_retry: Optional[bool] = None
    max_retry_attempts: Optional[int] = None
    retry_interval_hours: Optional[int] = None
    retry_schedule: Optional[str] = None
    notify_on_failure: Optional[bool] = None
    notify_customer_on_failure: Optional[bool] = None
    send_sms_on_failure: Optional[bool] = None
    failure_sms_template: Optional[str] = None


class RetryMultipleRequest(BaseModel):
    payment_ids: List[str] = Field(..., min_length=1, max_length=100)


class RetryOutcomeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    status: str
    message: str
    transaction_ref: Optional[str] = None
    next_retry_at: Optional[datetime] = None


class RetryBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    pending: int
    failed: int
    settled: int
    skipped: int
    errors: int
    results: List[RetryOutcomeSchema]


class FailedPaymentsResponse(BaseModel):
    """Response for GET /v1/admin/payments/failed"""

    payments: List[PaymentResponse]
    total: int
    page: int
    limit: int
    max_retry_attempts: int


class PaymentRetrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempt_number: int
    status: str
    transaction_ref: str
    external_ref: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    failure_reason: Optional[str] = None
    attempted_at: datetime
    completed_at: Optional[datetime] = None


class RetryHistoryResponse(BaseModel):
    payment: PaymentResponse
    retries: List[PaymentRetrySchema]


class OverdueSweepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contracts_checked: int
    installments_marked: int
    penalties_created: int
    penalty_total_pesewas: int


class DiscrepancySchema(BaseModel):
    contract_id: str
    contract_number: str
    deposit_pesewas: int
    successful_payments_pesewas: int
    expected_total_paid_pesewas: int
    recorded_total_paid_pesewas: int
    expected_outstanding_pesewas: int
    recorded_outstanding_pesewas: int
    difference_pesewas: int


class ReconciliationResponse(BaseModel):
    """Response for GET /v1/admin/reconciliation"""

    contracts_with_discrepancies: int
    discrepancies: List[DiscrepancySchema]
