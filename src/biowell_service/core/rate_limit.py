"""Sliding-window rate limiting for outbound service calls.

Chat and nutrition calls are limited per user before any request leaves
the process (defaults: 20 chat and 50 nutrition requests per minute).
"""

import time
from collections import deque
from collections.abc import Callable

import structlog

from biowell_service.core.errors import AppError, ErrorCode, Severity

logger = structlog.get_logger()

PRUNE_ABOVE_KEYS = 1000


class RateLimiter:
    """Per-key sliding window limiter.

    Attributes:
        name: Limiter name used in logs and error context
        max_requests: Requests allowed inside one window
        window_seconds: Window length
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests: dict[str, deque[float]] = {}
        self.logger = logger.bind(component="rate_limiter", limiter=name)

    @property
    def tracked_keys(self) -> int:
        """Keys with at least one request inside the window."""
        return len(self._requests)

    def _window(self, key: str) -> deque[float]:
        window = self._requests.get(key)
        if window is None:
            return deque()
        now = self.clock()
        while window and now - window[0] >= self.window_seconds:
            window.popleft()
        if not window:
            del self._requests[key]
        return window

    def is_allowed(self, key: str) -> bool:
        """Record a request for ``key`` if it fits in the window."""
        window = self._window(key)
        if len(window) >= self.max_requests:
            return False
        window.append(self.clock())
        self._requests[key] = window
        if len(self._requests) > PRUNE_ABOVE_KEYS:
            self.prune()
        return True

    def prune(self) -> int:
        """Drop keys whose requests have all left the window.

        Returns:
            Number of keys dropped
        """
        now = self.clock()
        stale = [
            key
            for key, window in self._requests.items()
            if not window or now - window[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._requests[key]
        return len(stale)

    def check(self, key: str) -> None:
        """Record a request or raise a RATE_LIMIT_ERROR.

        Raises:
            AppError: If ``key`` has exhausted its window
        """
        if self.is_allowed(key):
            return

        retry_after = round(self.reset_in(key), 1)
        self.logger.warning("Rate limit exceeded", key=key, retry_after=retry_after)
        raise AppError(
            f"Rate limit exceeded for {self.name}. Retry after {retry_after}s.",
            code=ErrorCode.RATE_LIMIT_ERROR,
            severity=Severity.MEDIUM,
            context={"limiter": self.name, "key": key, "retry_after": retry_after},
        )

    def remaining(self, key: str) -> int:
        return max(0, self.max_requests - len(self._window(key)))

    def reset_in(self, key: str) -> float:
        """Seconds until the oldest request in the window expires."""
        window = self._window(key)
        if not window:
            return 0.0
        return max(0.0, self.window_seconds - (self.clock() - window[0]))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)
