from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Ledger domain errors


class LedgerError(AppError):
    """Base for ledger rule and storage failures."""


class InvalidAmountError(LedgerError):
    def __init__(self, message: str = "Invalid amount", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_AMOUNT", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class BalanceOutOfRangeError(LedgerError):
    def __init__(
        self,
        message: str = "Resulting balance out of range",
        details: dict[str, Any] | None = None,
        code: str = "BALANCE_OUT_OF_RANGE",
        status_code: int = status.HTTP_409_CONFLICT,
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class InsufficientFundsError(BalanceOutOfRangeError):
    def __init__(self, message: str = "Insufficient credits", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            details=details,
            code="INSUFFICIENT_FUNDS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
        )


class SelfTransferNotAllowedError(LedgerError):
    def __init__(self, message: str = "Cannot transfer credits to yourself"):
        super().__init__(message, code="SELF_TRANSFER_NOT_ALLOWED", status_code=status.HTTP_400_BAD_REQUEST)


class AccountNotFoundError(LedgerError):
    def __init__(self, user_id: str):
        super().__init__(
            "Credit account not found",
            code="ACCOUNT_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"user_id": user_id},
        )


class StorageFailureError(LedgerError):
    def __init__(self, message: str = "Ledger storage unavailable", details: dict[str, Any] | None = None):
        super().__init__(message, code="STORAGE_FAILURE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class ReservationNotFoundError(LedgerError):
    def __init__(self, reservation_id: str):
        super().__init__(
            "Reservation not found",
            code="RESERVATION_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"reservation_id": reservation_id},
        )


class ReservationStateError(LedgerError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="RESERVATION_STATE", status_code=status.HTTP_409_CONFLICT, details=details)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": jsonable_encoder(exc.details),
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from credit_ledger.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
