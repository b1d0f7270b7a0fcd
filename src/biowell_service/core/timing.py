"""Operation timing for network-bound calls.

Every outbound call in the service layer is wrapped by ``OperationTimer``
so latency and error rates can be inspected or forwarded to an external
observability collector. The wrapper never changes the wrapped call's
result or exception; the only behavior it adds is the optional timeout.
"""

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

WARNING_THRESHOLD_MS = 8_000
CRITICAL_THRESHOLD_MS = 15_000
MAX_RECORDS = 1000


@dataclass(frozen=True)
class OperationRecord:
    """Outcome of one timed operation.

    Attributes:
        name: Operation name, e.g. ``"clients.send_chat_message"``
        started_at: Wall-clock start time
        duration_ms: Elapsed time in milliseconds
        success: Whether the operation returned normally
        error_type: Exception class name when it failed
    """

    name: str
    started_at: datetime
    duration_ms: float
    success: bool
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "success": self.success,
            "error_type": self.error_type,
        }


class OperationTimer:
    """Records duration and outcome of async operations.

    Usage:
        timer = OperationTimer()
        reply = await timer.measure(
            "clients.send_chat_message",
            lambda: client.post(url, json=payload),
            timeout=15,
        )
    """

    def __init__(
        self,
        max_records: int = MAX_RECORDS,
        reporter: Callable[[OperationRecord], None] | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize timer.

        Args:
            max_records: Number of records kept in memory
            reporter: Optional collector called with every record
            clock: High resolution clock returning seconds
        """
        self._records: deque[OperationRecord] = deque(maxlen=max_records)
        self.reporter = reporter
        self.clock = clock
        self.logger = logger.bind(component="operation_timer")

    async def measure(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``operation`` and record how it went.

        Args:
            name: Operation name used for grouping
            operation: Zero-argument callable returning an awaitable
            timeout: Seconds before the operation is cancelled

        Returns:
            Whatever the operation returns

        Raises:
            TimeoutError: If the timeout expires
            Exception: Any exception raised by the operation, unchanged
        """
        started_at = datetime.now(UTC)
        start = self.clock()
        try:
            if timeout is None:
                result = await operation()
            else:
                result = await asyncio.wait_for(operation(), timeout=timeout)
        except BaseException as exc:
            self._record(name, started_at, start, success=False, error_type=type(exc).__name__)
            raise
        self._record(name, started_at, start, success=True)
        return result

    def _record(
        self,
        name: str,
        started_at: datetime,
        start: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        duration_ms = (self.clock() - start) * 1000
        record = OperationRecord(
            name=name,
            started_at=started_at,
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )
        self._records.append(record)

        if duration_ms > CRITICAL_THRESHOLD_MS:
            self.logger.error("Critical operation latency", **record.to_dict())
        elif duration_ms > WARNING_THRESHOLD_MS:
            self.logger.warning("Slow operation", **record.to_dict())
        else:
            self.logger.debug("Operation finished", **record.to_dict())

        if self.reporter is not None:
            try:
                self.reporter(record)
            except Exception as e:
                self.logger.warning(
                    "Operation reporter failed",
                    operation=name,
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                )

    def records(self, name: str | None = None, limit: int = 100) -> list[OperationRecord]:
        """Most recent records, newest last, optionally filtered by name."""
        matching = [r for r in self._records if name is None or r.name == name]
        return matching[-limit:]

    def average_duration(self, name: str, window_seconds: float = 300) -> float:
        """Average duration of ``name`` over the trailing window, in ms."""
        cutoff = datetime.now(UTC) - timedelta(seconds=window_seconds)
        durations = [
            r.duration_ms for r in self._records if r.name == name and r.started_at >= cutoff
        ]
        return sum(durations) / len(durations) if durations else 0.0

    def summary(self) -> dict[str, dict[str, Any]]:
        """Aggregate latency and error rate per operation name."""
        grouped: dict[str, list[OperationRecord]] = defaultdict(list)
        for record in self._records:
            grouped[record.name].append(record)

        summary: dict[str, dict[str, Any]] = {}
        for name, records in grouped.items():
            durations = [r.duration_ms for r in records]
            failures = sum(1 for r in records if not r.success)
            summary[name] = {
                "count": len(records),
                "failures": failures,
                "error_rate": round(failures / len(records), 4),
                "avg_duration_ms": round(sum(durations) / len(durations), 2),
                "max_duration_ms": round(max(durations), 2),
            }
        return summary

    def clear(self) -> None:
        self._records.clear()
