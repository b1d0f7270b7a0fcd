"""Tests for the sliding-window rate limiter."""

import pytest

from biowell_service.core.errors import AppError, ErrorCode, Severity
from biowell_service.core.rate_limit import RateLimiter


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter("chat", max_requests=20, window_seconds=60, clock=clock)


def test_allows_up_to_limit(limiter: RateLimiter) -> None:
    assert all(limiter.is_allowed("user-1") for _ in range(20))
    assert not limiter.is_allowed("user-1")
    assert limiter.remaining("user-1") == 0


def test_keys_are_independent(limiter: RateLimiter) -> None:
    for _ in range(20):
        limiter.is_allowed("user-1")

    assert limiter.is_allowed("user-2")
    assert limiter.remaining("user-2") == 19


def test_window_slides(limiter: RateLimiter, clock) -> None:
    for _ in range(20):
        limiter.is_allowed("user-1")

    clock.advance(30)
    assert not limiter.is_allowed("user-1")
    assert limiter.reset_in("user-1") == 30

    clock.advance(30)
    assert limiter.is_allowed("user-1")


def test_check_raises_rate_limit_error(limiter: RateLimiter) -> None:
    for _ in range(20):
        limiter.check("user-1")

    with pytest.raises(AppError) as exc_info:
        limiter.check("user-1")

    error = exc_info.value
    assert error.code is ErrorCode.RATE_LIMIT_ERROR
    assert error.severity is Severity.MEDIUM
    assert error.context["key"] == "user-1"
    assert error.context["retry_after"] == 60


def test_reset(limiter: RateLimiter) -> None:
    for _ in range(20):
        limiter.is_allowed("user-1")

    limiter.reset("user-1")
    assert limiter.remaining("user-1") == 20


def test_drained_windows_are_dropped(limiter: RateLimiter, clock) -> None:
    limiter.is_allowed("user-1")
    limiter.is_allowed("user-2")
    assert limiter.tracked_keys == 2

    clock.advance(60)
    assert limiter.remaining("user-1") == 20
    assert limiter.reset_in("user-3") == 0.0
    assert limiter.tracked_keys == 1

    assert limiter.prune() == 1
    assert limiter.tracked_keys == 0


def test_many_idle_keys_are_pruned(limiter: RateLimiter, clock) -> None:
    for i in range(1000):
        limiter.is_allowed(f"user-{i}")
    assert limiter.tracked_keys == 1000

    clock.advance(60)
    limiter.is_allowed("user-new")

    assert limiter.tracked_keys == 1
