"""Translate domain exceptions into HTTP errors"""

import logging

from fastapi import HTTPException

from microloan_gateway.domain.exceptions import (
    CreditLimitExceeded,
    DomainException,
    InvalidLoanTransition,
    InvalidPolicyError,
    NotFoundError,
    OverRepayment,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 422,
    InvalidLoanTransition: 409,
    CreditLimitExceeded: 409,
    OverRepayment: 409,
    TransientStoreError: 503,
    InvalidPolicyError: 500,
}


def http_error(exc: Exception, request_id: str) -> HTTPException:
    """
    Map an exception raised by a service call to the HTTPException to raise.

    Business-rule violations keep their message; store and policy failures
    are logged and reported generically.
    """
    status_code = next(
        (code for exc_type, code in STATUS_CODES.items() if isinstance(exc, exc_type)),
        500,
    )
    extra = {"request_id": request_id, "error": type(exc).__name__}

    if status_code == 503:
        logger.error(f"Store unavailable: {exc}", extra=extra)
        return HTTPException(status_code=503, detail="Service temporarily unavailable, retry the request")

    if status_code == 500 or not isinstance(exc, DomainException):
        logger.error(f"Unexpected error: {exc}", extra=extra)
        return HTTPException(status_code=500, detail="Internal server error")

    logger.warning(str(exc), extra=extra)
    return HTTPException(status_code=status_code, detail=str(exc))
