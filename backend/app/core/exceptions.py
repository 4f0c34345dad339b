"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger("zapshift.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InvalidInputError(AppException):
    """Raised when caller-supplied data is rejected before any external call."""

    def __init__(self, message: str = "Invalid input", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INPUT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ParcelNotFoundError(ResourceNotFoundError):
    """Raised when a parcel lookup by ID finds nothing."""

    def __init__(self, parcel_id: Any):
        super().__init__("Parcel", parcel_id)


class GatewayUnavailableError(AppException):
    """
    Raised when the payment gateway cannot be reached or answers with an error.

    Retryable: no local state has been mutated when this is raised.
    """

    def __init__(self, message: str = "Payment gateway unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class NotPaidError(AppException):
    """Raised when the gateway reports a checkout session as not paid."""

    def __init__(self, session_id: str, payment_status: str = None):
        super().__init__(
            message="Checkout session has not been paid",
            error_code="ERR_PAY_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"session_id": session_id, "payment_status": payment_status}
        )


class ConflictingPaymentError(AppException):
    """
    Data-integrity alarm: a parcel is (or would be) paid by two different transactions.

    Never resolved automatically.
    """

    def __init__(self, parcel_id: Any, transaction_id: str, existing_transaction_id: str = None):
        super().__init__(
            message=f"Parcel {parcel_id} already has a conflicting payment",
            error_code="ERR_PAY_002",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "parcel_id": parcel_id,
                "transaction_id": transaction_id,
                "existing_transaction_id": existing_transaction_id,
            }
        )


class ParcelHasPaymentError(AppException):
    """Raised when deleting a parcel that a payment record references."""

    def __init__(self, parcel_id: Any):
        super().__init__(
            message=f"Parcel {parcel_id} has a recorded payment and cannot be deleted",
            error_code="ERR_PAY_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"parcel_id": parcel_id}
        )


class TrackingAssignmentExhaustedError(AppException):
    """Raised when every generated tracking ID collided. Safe to retry from scratch."""

    def __init__(self, parcel_id: Any, attempts: int):
        super().__init__(
            message="Could not assign a unique tracking ID",
            error_code="ERR_TRACKING_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"parcel_id": parcel_id, "attempts": attempts}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exc_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
