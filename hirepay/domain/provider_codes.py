"""Hubtel response code tables decoded into ProviderOutcome"""

from hirepay.domain.models import ProviderOutcome

# Payment callbacks (webhook ResponseCode)
CALLBACK_CODES = {
    "0000": ProviderOutcome.SUCCESS,
    "2001": ProviderOutcome.INSUFFICIENT_FUNDS,  # also customer rejection / timeout on the handset
}

# Receive money / direct debit initiation (synchronous ResponseCode)
INITIATION_CODES = {
    "0000": ProviderOutcome.PENDING,
    "0001": ProviderOutcome.PENDING,  # request accepted, callback will follow
    "2001": ProviderOutcome.INSUFFICIENT_FUNDS,
    "4000": ProviderOutcome.REJECTED,  # validation errors
    "4070": ProviderOutcome.REJECTED,  # fees could not be computed
    "4101": ProviderOutcome.REJECTED,  # business not fully set up
    "4103": ProviderOutcome.REJECTED,  # permission denied
}

# Transaction status API (data.status), lower-cased
STATUS_VALUES = {
    "paid": ProviderOutcome.SUCCESS,
    "success": ProviderOutcome.SUCCESS,
    "successful": ProviderOutcome.SUCCESS,
    "failed": ProviderOutcome.REJECTED,
    "declined": ProviderOutcome.REJECTED,
    "cancelled": ProviderOutcome.REJECTED,
    "pending": ProviderOutcome.PENDING,
    "unpaid": ProviderOutcome.PENDING,
}

FAILURE_MESSAGES = {
    ProviderOutcome.INSUFFICIENT_FUNDS: "Payment failed - insufficient funds or customer rejection",
    ProviderOutcome.REJECTED: "Payment rejected by provider",
}


def _normalize(code) -> str:
    return str(code).strip() if code is not None else ""


def decode_callback_code(code) -> ProviderOutcome:
    return CALLBACK_CODES.get(_normalize(code), ProviderOutcome.UNKNOWN_CODE)


def decode_initiation_code(code) -> ProviderOutcome:
    return INITIATION_CODES.get(_normalize(code), ProviderOutcome.UNKNOWN_CODE)


def decode_status_value(value) -> ProviderOutcome:
    return STATUS_VALUES.get(_normalize(value).lower(), ProviderOutcome.UNKNOWN_CODE)



def failure_message(outcome: ProviderOutcome, provider_message: str | None = None) -> str:
    if provider_message:
        return provider_message
    return FAILURE_MESSAGES.get(outcome, "Payment failed")
