import traceback
from typing import Any

from fastapi import Request, status
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


class ValidationFailedError(AppError):
    """Malformed input detected by a handler (wrong type, negative amount, ...)."""

    def __init__(self, message: str = "Validation error", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Authentication


class InvalidCredentialError(AppError):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message, code="INVALID_CREDENTIAL", status_code=status.HTTP_403_FORBIDDEN)


class VerificationTimeoutError(AppError):
    def __init__(self, message: str = "Identity provider did not respond", attempts: int = 0):
        super().__init__(
            message,
            code="VERIFICATION_TIMEOUT",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"attempts": attempts},
        )


class ProviderUnavailableError(AppError):
    def __init__(self, message: str = "Identity provider not configured"):
        super().__init__(message, code="PROVIDER_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class TwoFactorRequiredError(AppError):
    def __init__(self, message: str = "2FA verification required"):
        super().__init__(message, code="TWO_FACTOR_REQUIRED", status_code=status.HTTP_403_FORBIDDEN)


class TwoFactorNotEnabledError(AppError):
    def __init__(self, message: str = "2FA not enabled for this user"):
        super().__init__(message, code="TWO_FACTOR_NOT_ENABLED", status_code=status.HTTP_404_NOT_FOUND)


class InvalidCodeError(AppError):
    def __init__(self, message: str = "Invalid 2FA code"):
        super().__init__(message, code="INVALID_CODE", status_code=status.HTTP_400_BAD_REQUEST)


# Currency codes


class CooldownActiveError(AppError):
    def __init__(self, hours_remaining: int):
        self.hours_remaining = hours_remaining
        super().__init__(
            f"Please wait {hours_remaining} hours before claiming another bonus",
            code="COOLDOWN_ACTIVE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"hoursRemaining": hours_remaining},
        )


class NoClaimableCodeError(AppError):
    def __init__(self, message: str = "No available currency codes or already claimed."):
        super().__init__(message, code="NO_CLAIMABLE_CODE", status_code=status.HTTP_400_BAD_REQUEST)


class AlreadyClaimedError(AppError):
    def __init__(self, message: str = "Invalid or already claimed code."):
        super().__init__(message, code="ALREADY_CLAIMED", status_code=status.HTTP_400_BAD_REQUEST)


class DeliveryFailedError(AppError):
    """Mail could not be delivered. Side effects committed before the send are kept."""

    def __init__(self, message: str = "Email delivery failed", currency_code: str | None = None):
        details = {"code": currency_code} if currency_code else {}
        super().__init__(
            message,
            code="DELIVERY_FAILED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
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
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from blackjack_rewards.core.config import get_settings
    from blackjack_rewards.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    details: dict[str, Any] = {}
    if not get_settings().is_production:
        details["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
