"""HTTP clients for the external completion, speech, nutrition and recipe services.

Every call follows the same path:

    cache check -> join an identical in-flight call -> rate limit
    -> timed request with timeout (retried with backoff on transport
       failures and 5xx responses) -> response validation -> cache populate

Failures are classified with the service's error code (``API_ERROR`` for
the completion service, ``TTS_ERROR`` for speech, ``NUTRITION_ERROR`` and
``RECIPE_ERROR``), passed to the error handler and raised as ``AppError``.
Timeouts are always a medium ``API_ERROR``.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from biowell_service import __version__
from biowell_service.core.cache import CacheService, cache_key
from biowell_service.core.config import Settings
from biowell_service.core.errors import AppError, ErrorCode, ErrorHandler, Severity
from biowell_service.core.rate_limit import RateLimiter
from biowell_service.core.timing import OperationTimer
from biowell_service.schemas.assistant import (
    DEFAULT_VOICE_ID,
    MAX_SPEECH_CHARACTERS,
    NutritionAnalysis,
    RecipeFilters,
    RecipeSearchResult,
    SpeechResult,
)
from biowell_service.schemas.chat import ChatReply

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class CacheTTLs:
    """Cache lifetimes per call family, in seconds."""

    chat: float = 30
    nutrition: float = 900
    recipes: float = 600
    speech: float = 600

    @classmethod
    def from_settings(cls, config: Settings) -> "CacheTTLs":
        return cls(
            chat=config.chat_cache_ttl_seconds,
            nutrition=config.nutrition_cache_ttl_seconds,
            recipes=config.recipe_cache_ttl_seconds,
            speech=config.speech_cache_ttl_seconds,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base_delay, then doubled, capped at max_delay."""

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            attempts=config.request_retry_attempts,
            base_delay=config.request_retry_base_delay_seconds,
            max_delay=config.request_retry_max_delay_seconds,
        )


def is_retryable(exc: BaseException) -> bool:
    """Transport failures and 5xx responses; never 4xx."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


def _consume_exception(future: "asyncio.Future[Any]") -> None:
    # Nobody may be waiting on a coalesced call
    if not future.cancelled():
        future.exception()


class ServiceClient:
    """Client for the dashboard's external services.

    Usage:
        async with ServiceClient(base_url, cache, timer, handler) as client:
            reply = await client.send_chat_message("Hello", "user-123")
    """

    def __init__(
        self,
        base_url: str,
        cache: CacheService,
        timer: OperationTimer,
        error_handler: ErrorHandler,
        auth_token: str | None = None,
        timeout: float = 15.0,
        ttls: CacheTTLs | None = None,
        retry: RetryPolicy | None = None,
        chat_limiter: RateLimiter | None = None,
        nutrition_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Base URL of the service functions
            cache: Response cache
            timer: Operation timer wrapping every request
            error_handler: Handler receiving every failure
            auth_token: Bearer token for the services
            timeout: Seconds before a request is abandoned
            ttls: Cache lifetimes per call family
            retry: Backoff for transport failures and 5xx responses
            chat_limiter: Per-user limiter for completion calls
            nutrition_limiter: Per-user limiter for nutrition calls
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"biowell-service/{__version__}",
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        self.cache = cache
        self.timer = timer
        self.error_handler = error_handler
        self.timeout = timeout
        self.ttls = ttls or CacheTTLs()
        self.retry = retry or RetryPolicy()
        self.chat_limiter = chat_limiter
        self.nutrition_limiter = nutrition_limiter
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self.logger = logger.bind(service="clients")

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        cache: CacheService,
        timer: OperationTimer,
        error_handler: ErrorHandler,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceClient":
        return cls(
            base_url=config.service_base_url,
            cache=cache,
            timer=timer,
            error_handler=error_handler,
            auth_token=config.service_auth_token,
            timeout=config.request_timeout_seconds,
            ttls=CacheTTLs.from_settings(config),
            retry=RetryPolicy.from_settings(config),
            chat_limiter=RateLimiter("chat", config.chat_rate_limit_per_minute),
            nutrition_limiter=RateLimiter("nutrition", config.nutrition_rate_limit_per_minute),
            transport=transport,
        )

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(
        self,
        action: str,
        code: ErrorCode,
        key: str,
        ttl_seconds: float,
        send: Callable[[], Awaitable[httpx.Response]],
        parse: Callable[[Any], T],
        limiter: RateLimiter | None = None,
        limit_key: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run one cached, timed, rate-limited request.

        Concurrent calls with the same cache key share one request and its
        outcome.

        Raises:
            AppError: On any failure, after the error handler has seen it
        """
        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug("Cache hit", action=action, key=key)
            return cached  # type: ignore[no-any-return]

        waiting = self._in_flight.get(key)
        if waiting is not None:
            self.logger.debug("Joining in-flight request", action=action, key=key)
            return await asyncio.shield(waiting)  # type: ignore[no-any-return]

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._in_flight[key] = future
        try:
            result = await self._fetch(
                action, code, key, ttl_seconds, send, parse, limiter, limit_key, context
            )
        except Exception as e:
            future.set_exception(e)
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    async def _fetch(
        self,
        action: str,
        code: ErrorCode,
        key: str,
        ttl_seconds: float,
        send: Callable[[], Awaitable[httpx.Response]],
        parse: Callable[[Any], T],
        limiter: RateLimiter | None,
        limit_key: str | None,
        context: dict[str, Any] | None,
    ) -> T:
        computed_at = self.cache.now()
        try:
            if limiter is not None and limit_key is not None:
                limiter.check(limit_key)
            response = await self.timer.measure(
                f"clients.{action}", lambda: self._send(action, send), timeout=self.timeout
            )
            result = parse(response.json())
        except Exception as e:
            outcome = self.error_handler.handle(
                e,
                context={"component": "clients", "action": action, **(context or {})},
                code=code,
            )
            raise outcome.error from e

        self.cache.set(key, result, ttl_seconds=ttl_seconds, computed_at=computed_at)
        return result

    async def _send(
        self, action: str, send: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        """Send with exponential backoff on transport failures and 5xx responses."""

        def log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            self.logger.warning(
                "Retrying request",
                action=action,
                attempt=state.attempt_number,
                error_type=type(exc).__name__ if exc else None,
                error=str(exc)[:200] if exc else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry.attempts),
            wait=wait_exponential(multiplier=self.retry.base_delay, max=self.retry.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await send()
                response.raise_for_status()
        return response

    def _reject(self, message: str, action: str, **context: Any) -> AppError:
        error = AppError(
            message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=Severity.LOW,
            context={"component": "clients", "action": action, **context},
        )
        self.error_handler.handle(error)
        return error

    async def send_chat_message(
        self,
        text: str,
        user_id: str,
        session_id: str | None = None,
    ) -> ChatReply:
        """Ask the completion service for a reply.

        Args:
            text: User message
            user_id: Sender
            session_id: Conversation the message belongs to

        Returns:
            ChatReply with response text, timestamp and confidence
        """
        if not text.strip():
            raise self._reject("Message text is empty", "send_chat_message")

        payload = {"message": text, "userId": user_id, "sessionId": session_id}

        def parse(body: Any) -> ChatReply:
            body = dict(body)
            body.setdefault("timestamp", datetime.now(UTC))
            body.setdefault("session_id", session_id)
            return ChatReply.model_validate(body)

        return await self._call(
            "send_chat_message",
            ErrorCode.API_ERROR,
            cache_key("chat", user_id, session_id, message=text),
            self.ttls.chat,
            lambda: self._client.post("/openai-chat", json=payload),
            parse,
            limiter=self.chat_limiter,
            limit_key=user_id,
            context={"user_id": user_id, "session_id": session_id},
        )

    async def generate_speech(self, text: str, voice_id: str | None = None) -> SpeechResult:
        """Synthesize speech for a text of at most 5000 characters.

        Returns:
            SpeechResult with base64 audio, content type and duration
        """
        if not text.strip():
            raise self._reject("Speech text is empty", "generate_speech")
        if len(text) > MAX_SPEECH_CHARACTERS:
            raise self._reject(
                f"Speech text exceeds {MAX_SPEECH_CHARACTERS} characters",
                "generate_speech",
                length=len(text),
            )

        voice = voice_id or DEFAULT_VOICE_ID
        payload = {"text": text, "voiceId": voice}
        return await self._call(
            "generate_speech",
            ErrorCode.TTS_ERROR,
            cache_key("speech", voice, text=text),
            self.ttls.speech,
            lambda: self._client.post("/elevenlabs-tts", json=payload),
            SpeechResult.model_validate,
            context={"voice_id": voice},
        )

    async def analyze_nutrition(
        self,
        food: str,
        quantity: str,
        user_id: str,
        meal_type: str | None = None,
    ) -> NutritionAnalysis:
        """Analyze the nutrition of a food portion.

        A food the service does not know (404) is an error, never an empty
        analysis.
        """
        food = food.strip()
        if not food:
            raise self._reject("Food name is empty", "analyze_nutrition")

        payload = {
            "foodName": food,
            "quantity": quantity,
            "userId": user_id,
            "mealType": meal_type,
        }
        return await self._call(
            "analyze_nutrition",
            ErrorCode.NUTRITION_ERROR,
            cache_key("nutrition", user_id, food=food.lower(), quantity=quantity, meal=meal_type),
            self.ttls.nutrition,
            lambda: self._client.post("/nutrition-analysis", json=payload),
            NutritionAnalysis.model_validate,
            limiter=self.nutrition_limiter,
            limit_key=user_id,
            context={"user_id": user_id, "food": food},
        )

    async def search_recipes(
        self,
        query: str,
        filters: RecipeFilters | None = None,
    ) -> RecipeSearchResult:
        """Search recipes by free text and optional filters."""
        params = {"query": query.strip(), **(filters or RecipeFilters()).to_query()}
        return await self._call(
            "search_recipes",
            ErrorCode.RECIPE_ERROR,
            cache_key("recipes", **params),
            self.ttls.recipes,
            lambda: self._client.get("/spoonacular-recipes", params=params),
            RecipeSearchResult.model_validate,
            context={"query": params["query"]},
        )
