"""Error taxonomy and the single error handling entrypoint.

Every failure in the service layer ends up as an ``AppError`` carrying a
closed ``ErrorCode``, a ``Severity`` and a context map (component, action,
correlated ids). Low-level exceptions are wrapped where they are caught
and passed to ``ErrorHandler.handle``, which applies the severity policy:

    HIGH    notify the user, no fallback (the operation is rejected)
    MEDIUM  notify the user, data-fetch paths may fall back to synthetic data
    LOW     log only

Handling the same error twice returns the first outcome without notifying
or reporting again.
"""

import weakref
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()


class ErrorCode(str, Enum):
    """Closed set of failure kinds.

    Attributes:
        API_ERROR: Completion service or generic upstream failure, including timeouts
        TTS_ERROR: Speech synthesis failed
        NUTRITION_ERROR: Nutrition analysis failed
        RECIPE_ERROR: Recipe search failed
        DATABASE_ERROR: Persistent store failed
        AUTH_ERROR: Upstream rejected our credentials
        SIGNUP_ERROR: Identity provider rejected a sign-up
        SIGNIN_ERROR: Identity provider rejected a sign-in
        SIGNOUT_ERROR: Identity provider failed to end a session
        INVALID_RESPONSE: Upstream answered with an unexpected body
        VALIDATION_ERROR: Caller supplied invalid input
        RATE_LIMIT_ERROR: Too many requests, locally or upstream
        NETWORK_ERROR: Upstream unreachable
        MESSAGE_PENDING: A chat message is already being sent in this session
        UNKNOWN_ERROR: Anything not classified above
    """

    API_ERROR = "API_ERROR"
    TTS_ERROR = "TTS_ERROR"
    NUTRITION_ERROR = "NUTRITION_ERROR"
    RECIPE_ERROR = "RECIPE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    SIGNUP_ERROR = "SIGNUP_ERROR"
    SIGNIN_ERROR = "SIGNIN_ERROR"
    SIGNOUT_ERROR = "SIGNOUT_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    MESSAGE_PENDING = "MESSAGE_PENDING"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class Severity(str, Enum):
    """User impact of an error."""

    LOW = "low"  # Logged only
    MEDIUM = "medium"  # Notified, fallback allowed
    HIGH = "high"  # Notified, operation rejected


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.API_ERROR: "The assistant is not responding right now. Please try again.",
    ErrorCode.TTS_ERROR: "Voice playback is unavailable at the moment.",
    ErrorCode.NUTRITION_ERROR: "We couldn't analyze that food. Please check the name.",
    ErrorCode.RECIPE_ERROR: "Recipe search is unavailable at the moment.",
    ErrorCode.DATABASE_ERROR: "We couldn't load or save your data. Please try again.",
    ErrorCode.AUTH_ERROR: "Your session has expired. Please sign in again.",
    ErrorCode.SIGNUP_ERROR: "We couldn't create your account. Please try again.",
    ErrorCode.SIGNIN_ERROR: "Sign in failed. Please check your details.",
    ErrorCode.SIGNOUT_ERROR: "Sign out failed. Please try again.",
    ErrorCode.INVALID_RESPONSE: "We received an unexpected response. Please try again.",
    ErrorCode.VALIDATION_ERROR: "Please check your input and try again.",
    ErrorCode.RATE_LIMIT_ERROR: "Too many requests. Please wait a moment and try again.",
    ErrorCode.NETWORK_ERROR: "Network connection problem. Please check your connection.",
    ErrorCode.MESSAGE_PENDING: "Message already sending. Please wait for the reply.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


class AppError(Exception):
    """A classified failure.

    The code is fixed at construction; context may be enriched as the
    error travels up through the service layer.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self._code = ErrorCode(code)
        self.severity = Severity(severity)
        self.context: dict[str, Any] = dict(context or {})
        self.error_id = uuid4().hex
        self.timestamp = datetime.now(UTC)

    @property
    def code(self) -> ErrorCode:
        return self._code

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self._code]

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dict for structured logging.

        Returns:
            Dict suitable for structlog context
        """
        return {
            "error_id": self.error_id,
            "code": self._code.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            **self.context,
        }

    def __repr__(self) -> str:
        return (
            f"AppError(code={self._code.value}, severity={self.severity.value}, "
            f"message={self.message!r})"
        )


@dataclass(frozen=True)
class ErrorOutcome:
    """What the handler decided for one error.

    Attributes:
        error: The handled error
        notified: Whether a user-visible notification was raised
        allow_fallback: Whether the caller may substitute cached or synthetic data
    """

    error: AppError
    notified: bool
    allow_fallback: bool


class Notifier(Protocol):
    """Surfaces user-visible notifications (toasts in the dashboard)."""

    def notify(self, error: AppError, message: str) -> None: ...


class LogNotifier:
    """Default notifier: records the notification in the log stream."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="notifier")

    def notify(self, error: AppError, message: str) -> None:
        self.logger.info(
            "User notification",
            error_id=error.error_id,
            code=error.code.value,
            severity=error.severity.value,
            user_message=message,
        )


class ErrorHandler:
    """Single entrypoint for classifying and handling failures.

    Usage:
        handler = ErrorHandler()

        try:
            reply = await client.send_chat_message(text, user_id)
        except Exception as e:
            outcome = handler.handle(e, context={"component": "chat", "action": "send"})
            if not outcome.allow_fallback:
                raise outcome.error from e
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        reporter: Callable[[AppError], None] | None = None,
        max_recent: int = 100,
        max_tracked: int = 1000,
    ) -> None:
        """Initialize error handler.

        Args:
            notifier: Receives user-visible notifications
            reporter: Optional external error tracker, called once per error
            max_recent: Number of handled errors kept for inspection
            max_tracked: Number of error ids remembered for idempotence
        """
        self.notifier: Notifier = notifier or LogNotifier()
        self.reporter = reporter
        self._recent: deque[AppError] = deque(maxlen=max_recent)
        self._outcomes: OrderedDict[str, ErrorOutcome] = OrderedDict()
        self._wrapped: weakref.WeakKeyDictionary[BaseException, AppError] = (
            weakref.WeakKeyDictionary()
        )
        self._max_tracked = max_tracked
        self.logger = logger.bind(component="error_handler")

    def classify(
        self,
        exception: BaseException,
        code: ErrorCode | None = None,
        context: dict[str, Any] | None = None,
    ) -> AppError:
        """Wrap an exception into an AppError.

        Args:
            exception: The exception to classify
            code: Service code (API_ERROR, TTS_ERROR, ...) applied to every HTTP
                status and connection failure of that service
            context: Additional context (component, action, ids)

        Returns:
            The classified AppError (the same object if one was passed in,
            or if this exception was classified before)
        """
        context = context or {}

        app_error = exception if isinstance(exception, AppError) else self._wrapped.get(exception)
        if app_error is not None:
            for key, value in context.items():
                app_error.context.setdefault(key, value)
            return app_error

        app_error = self._wrap(exception, code, context)
        self._wrapped[exception] = app_error
        return app_error

    def _wrap(
        self,
        exception: BaseException,
        code: ErrorCode | None,
        context: dict[str, Any],
    ) -> AppError:
        fallback_code = code or ErrorCode.UNKNOWN_ERROR
        details = {"exception_type": type(exception).__name__, **context}

        # Timeouts, from httpx or from the operation timer
        if isinstance(exception, (httpx.TimeoutException, TimeoutError)):
            return AppError(
                f"Request timed out: {str(exception) or type(exception).__name__}",
                code=ErrorCode.API_ERROR,
                severity=Severity.MEDIUM,
                context=details,
            )
        if isinstance(exception, httpx.ConnectError):
            return AppError(
                f"Failed to connect: {exception}",
                code=code or ErrorCode.NETWORK_ERROR,
                severity=Severity.MEDIUM,
                context=details,
            )
        if isinstance(exception, httpx.HTTPStatusError):
            return self._from_status(exception, code, details)

        if isinstance(exception, SQLAlchemyError):
            return AppError(
                f"Database error: {str(exception)[:500]}",
                code=ErrorCode.DATABASE_ERROR,
                severity=Severity.MEDIUM,
                context=details,
            )

        # Malformed payloads (pydantic ValidationError is a ValueError)
        if isinstance(exception, (ValueError, KeyError, TypeError)):
            return AppError(
                f"Invalid response: {exception}",
                code=ErrorCode.INVALID_RESPONSE,
                severity=Severity.MEDIUM,
                context=details,
            )

        return AppError(
            f"Unexpected error: {type(exception).__name__}: {exception}",
            code=fallback_code,
            severity=Severity.MEDIUM,
            context=details,
        )

    def _from_status(
        self,
        exception: httpx.HTTPStatusError,
        service_code: ErrorCode | None,
        details: dict[str, Any],
    ) -> AppError:
        """Map a non-2xx response.

        Severity follows the status: auth failures and 5xx are HIGH, the
        rest MEDIUM. Without a service code, 401/403 become AUTH_ERROR and
        429 becomes RATE_LIMIT_ERROR.
        """
        status_code = exception.response.status_code
        details = {"status_code": status_code, "url": str(exception.request.url), **details}

        if status_code in (401, 403):
            code, severity = service_code or ErrorCode.AUTH_ERROR, Severity.HIGH
        elif status_code == 429:
            code, severity = service_code or ErrorCode.RATE_LIMIT_ERROR, Severity.MEDIUM
        elif status_code >= 500:
            code, severity = service_code or ErrorCode.API_ERROR, Severity.HIGH
        else:
            code, severity = service_code or ErrorCode.API_ERROR, Severity.MEDIUM

        return AppError(
            f"HTTP {status_code} from {exception.request.url.path}",
            code=code,
            severity=severity,
            context=details,
        )

    def handle(
        self,
        error: BaseException,
        context: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> ErrorOutcome:
        """Classify, log, notify and report an error once.

        Args:
            error: AppError or raw exception
            context: Additional context merged into the error
            code: Fallback code for raw exceptions

        Returns:
            ErrorOutcome describing the decision
        """
        app_error = self.classify(error, code=code, context=context)

        previous = self._outcomes.get(app_error.error_id)
        if previous is not None:
            return previous

        log_context = app_error.to_log_dict()
        if app_error.severity is Severity.HIGH:
            self.logger.error("Error handled", **log_context)
        elif app_error.severity is Severity.MEDIUM:
            self.logger.warning("Error handled", **log_context)
        else:
            self.logger.info("Error handled", **log_context)

        notified = app_error.severity is not Severity.LOW
        if notified:
            self.notifier.notify(app_error, app_error.user_message)

        if self.reporter is not None:
            self.reporter(app_error)

        outcome = ErrorOutcome(
            error=app_error,
            notified=notified,
            allow_fallback=app_error.severity is not Severity.HIGH,
        )
        self._remember(outcome)
        return outcome

    def _remember(self, outcome: ErrorOutcome) -> None:
        self._recent.append(outcome.error)
        self._outcomes[outcome.error.error_id] = outcome
        while len(self._outcomes) > self._max_tracked:
            self._outcomes.popitem(last=False)

    def recent_errors(self, count: int = 10) -> list[AppError]:
        """Most recently handled errors, newest last."""
        return list(self._recent)[-count:]

    def clear(self) -> None:
        self._recent.clear()
        self._outcomes.clear()
        self._wrapped.clear()
