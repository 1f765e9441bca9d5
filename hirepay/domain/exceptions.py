"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


# Validation


class PaymentValidationError(DomainException):
    """Payment request is malformed or not allowed"""

    pass


class OverpaymentError(PaymentValidationError):
    """Payment amount exceeds the contract's outstanding balance"""

    pass


class ContractNotActiveError(PaymentValidationError):
    """Contract is not ACTIVE and cannot take payments"""

    pass


class RetryNotAllowedError(PaymentValidationError):
    """Payment cannot be retried in its current state"""

    pass


class UnsupportedNetworkError(PaymentValidationError):
    """Mobile network is unknown or does not support the requested channel"""

    pass


# Not found


class NotFoundError(DomainException):
    """Requested entity does not exist"""

    pass


class ContractNotFoundError(NotFoundError):
    pass


class CustomerNotFoundError(NotFoundError):
    pass


class PaymentNotFoundError(NotFoundError):
    pass


class PreapprovalNotFoundError(NotFoundError):
    pass


# Gateway


class GatewayError(DomainException):
    """
    Gateway call did not produce a provider answer.

    `ambiguous` is True when the provider may have acted on the request
    (timeout, 5xx, broken response) and False when it certainly did not.
    """

    ambiguous = True

    def __init__(self, message: str, ambiguous: bool | None = None):
        super().__init__(message)
        if ambiguous is not None:
            self.ambiguous = ambiguous


class GatewayTimeoutError(GatewayError):
    """Gateway did not answer within the configured timeout"""

    ambiguous = True


class GatewayUnavailableError(GatewayError):
    """Gateway returned 5xx or the transport failed"""

    pass


class GatewayResponseError(GatewayError):
    """Gateway answered with a body that could not be decoded"""

    pass


# Store / jobs


class TransactionReferenceCollisionError(DomainException):
    """Could not generate an unused transaction reference"""

    pass


class JobAlreadyRunningError(DomainException):
    """A singleton job is already holding its lease"""

    pass


class InvalidRetrySettingsError(DomainException):
    """Retry settings update outside the allowed ranges"""

    pass
