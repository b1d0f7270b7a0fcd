"""Translate AppError into JSON responses."""

from litestar import Request, Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from biowell_service.core.errors import AppError, ErrorCode

STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.MESSAGE_PENDING: HTTP_409_CONFLICT,
    ErrorCode.RATE_LIMIT_ERROR: HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.AUTH_ERROR: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNUP_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.SIGNIN_ERROR: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNOUT_ERROR: HTTP_400_BAD_REQUEST,
    ErrorCode.DATABASE_ERROR: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.API_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.TTS_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.NUTRITION_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.RECIPE_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.INVALID_RESPONSE: HTTP_502_BAD_GATEWAY,
    ErrorCode.NETWORK_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.UNKNOWN_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: AppError) -> int:
    # Upstream "not found" (e.g. unknown food) stays a 404 for the caller
    if error.context.get("status_code") == HTTP_404_NOT_FOUND:
        return HTTP_404_NOT_FOUND
    return STATUS_BY_CODE.get(error.code, HTTP_500_INTERNAL_SERVER_ERROR)


def app_error_handler(request: Request, exc: AppError) -> Response[dict[str, str]]:
    """Exception handler registered for AppError."""
    return Response(
        content={
            "error": exc.user_message,
            "detail": exc.message,
            "code": exc.code.value,
            "severity": exc.severity.value,
            "error_id": exc.error_id,
        },
        status_code=status_for(exc),
    )
