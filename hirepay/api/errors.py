"""Translation of domain exceptions to HTTP errors"""

import logging
from fastapi import HTTPException
from hirepay.domain.exceptions import (
    DomainException,
    GatewayError,
    InvalidRetrySettingsError,
    JobAlreadyRunningError,
    NotFoundError,
    PaymentValidationError,
    TransactionReferenceCollisionError,
)

logger = logging.getLogger(__name__)


def to_http_exception(error: Exception, request_id: str | None = None) -> HTTPException:
    """Map an exception raised by a service to the HTTP error the client sees"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (PaymentValidationError, InvalidRetrySettingsError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, JobAlreadyRunningError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, GatewayError):
        logger.error(f"Hubtel error: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=502, detail="Payment provider unavailable")
    if isinstance(error, TransactionReferenceCollisionError):
        logger.error(f"Reference generation failed: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Could not allocate a transaction reference")
    if not isinstance(error, DomainException):
        logger.exception(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
