"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


class ContractStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"
    CANCELLED = "CANCELLED"


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "MOBILE_MONEY"
    HUBTEL_REGULAR = "HUBTEL_REGULAR"
    HUBTEL_DIRECT_DEBIT = "HUBTEL_DIRECT_DEBIT"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"


class PaymentFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class ProviderOutcome(str, Enum):
    """Provider answer decoded once at the gateway boundary"""

    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    REJECTED = "REJECTED"
    UNKNOWN_CODE = "UNKNOWN_CODE"

    @property
    def is_failure(self) -> bool:
        return self in (ProviderOutcome.INSUFFICIENT_FUNDS, ProviderOutcome.REJECTED)

    @property
    def is_unresolved(self) -> bool:
        return self in (ProviderOutcome.PENDING, ProviderOutcome.UNKNOWN_CODE)


# Ledger allocation


@dataclass
class ContractState:
    """Contract totals as seen by the allocator"""

    id: str
    total_price_pesewas: int
    total_paid_pesewas: int
    outstanding_balance_pesewas: int
    status: ContractStatus = ContractStatus.ACTIVE


@dataclass
class PenaltyState:
    """Unpaid late fee"""

    id: str
    amount_pesewas: int
    is_paid: bool = False


@dataclass
class InstallmentState:
    """Scheduled obligation with its progress"""

    id: str
    installment_no: int
    amount_pesewas: int
    paid_pesewas: int = 0
    status: InstallmentStatus = InstallmentStatus.PENDING

    @property
    def due_pesewas(self) -> int:
        return self.amount_pesewas - self.paid_pesewas


@dataclass
class PenaltyApplication:
    penalty_id: str
    amount_pesewas: int


@dataclass
class InstallmentApplication:
    installment_id: str
    installment_no: int
    applied_pesewas: int
    paid_pesewas: int  # paid amount after this allocation
    status: InstallmentStatus


@dataclass
class AllocationResult:
    """Allocation plan and resulting contract totals"""

    incoming_pesewas: int
    penalties: List[PenaltyApplication]
    installments: List[InstallmentApplication]
    unapplied_pesewas: int
    total_paid_pesewas: int
    outstanding_balance_pesewas: int
    contract_status: ContractStatus

    @property
    def applied_pesewas(self) -> int:
        return sum(p.amount_pesewas for p in self.penalties) + sum(
            i.applied_pesewas for i in self.installments
        )

    @property
    def completed(self) -> bool:
        return self.contract_status == ContractStatus.COMPLETED


# Installment plans


@dataclass
class Installment:
    """Single payment in a repayment plan"""

    installment_no: int
    due_date: date
    amount_pesewas: int


@dataclass
class OverdueAssessment:
    """Installment that just became overdue and the penalty it attracts"""

    installment_id: str
    installment_no: int
    unpaid_pesewas: int
    penalty_pesewas: int


# Gateway


@dataclass
class ChargeResponse:
    """Provider answer to a charge initiation"""

    outcome: ProviderOutcome
    response_code: str
    message: str
    external_ref: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResponse:
    """Provider answer to a status query"""

    outcome: ProviderOutcome
    found: bool = True
    provider_status: Optional[str] = None
    external_ref: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PreapprovalResponse:
    """Provider answer for direct debit mandate calls"""

    status: str
    message: str = ""
    provider_preapproval_id: Optional[str] = None
    client_reference_id: Optional[str] = None
    verification_type: Optional[str] = None
    otp_prefix: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


# Callbacks


@dataclass
class CallbackEvent:
    """Payment webhook after payload validation"""

    response_code: Optional[str]
    message: str = ""
    client_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    external_transaction_id: Optional[str] = None
    amount: Optional[float] = None  # cedis, as sent by the provider
    payment_date: Optional[str] = None
    description: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PreapprovalEvent:
    """Direct debit mandate webhook"""

    client_reference_id: Optional[str]
    preapproval_status: Optional[str] = None
    provider_preapproval_id: Optional[str] = None
    customer_msisdn: Optional[str] = None
    verification_type: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
