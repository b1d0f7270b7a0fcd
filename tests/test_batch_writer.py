"""Tests for chunked best-effort metric writes."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from biowell_service.schemas.metrics import HealthMetricRecord, MetricSource, MetricType
from biowell_service.services.batch_writer import BatchWriter, chunked

START = datetime(2026, 10, 19, tzinfo=UTC)


def glucose_records(count: int, user_id: str = "user-1") -> list[HealthMetricRecord]:
    return [
        HealthMetricRecord(
            user_id=user_id,
            metric_type=MetricType.GLUCOSE,
            value=100,
            unit="mg/dL",
            timestamp=START + timedelta(minutes=15 * i),
            source=MetricSource.CGM,
        )
        for i in range(count)
    ]


class FakeMetricStore:
    """Store that fails on chosen calls and logs every insert."""

    def __init__(
        self,
        fail_calls: set[int] | None = None,
        delay: float = 0,
        error: Exception | None = None,
    ) -> None:
        self.fail_calls = fail_calls or set()
        self.error = error
        self.delay = delay
        self.calls = 0
        self.inserted: list[HealthMetricRecord] = []
        self.log: list[tuple[str, int]] = []

    async def insert_many(self, records: Sequence[HealthMetricRecord]) -> int:
        call = self.calls
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if call in self.fail_calls:
            raise self.error or OperationalError("INSERT", {}, Exception("deadlock detected"))
        self.inserted.extend(records)
        self.log.append((records[0].user_id, len(records)))
        return len(records)


def test_chunked() -> None:
    assert [len(c) for c in chunked(list(range(250)), 100)] == [100, 100, 50]
    assert list(chunked([], 10)) == []


async def test_writes_all_chunks() -> None:
    store = FakeMetricStore()
    writer = BatchWriter(store, chunk_size=100)

    written = await writer.write(glucose_records(250))

    assert written == 250
    assert store.calls == 3
    assert writer.last_failed_chunks == []


@pytest.mark.parametrize("failing", [0, 1, 2])
async def test_failed_chunk_is_skipped(failing: int) -> None:
    store = FakeMetricStore(fail_calls={failing})
    writer = BatchWriter(store, chunk_size=100)
    records = glucose_records(250)

    written = await writer.write(records)

    chunk_sizes = [100, 100, 50]
    assert written == sum(size for i, size in enumerate(chunk_sizes) if i != failing)
    assert written == len(store.inserted)
    assert store.calls == 3
    assert writer.last_failed_chunks == [failing]


async def test_all_chunks_failing_returns_zero() -> None:
    store = FakeMetricStore(fail_calls={0, 1})
    writer = BatchWriter(store, chunk_size=10)

    assert await writer.write(glucose_records(20)) == 0
    assert writer.last_failed_chunks == [0, 1]


async def test_empty_write() -> None:
    store = FakeMetricStore()
    assert await BatchWriter(store).write([]) == 0
    assert store.calls == 0


async def test_writes_for_one_partition_do_not_interleave() -> None:
    store = FakeMetricStore(delay=0.001)
    writer = BatchWriter(store, chunk_size=5)

    await asyncio.gather(
        writer.write(glucose_records(15, "user-1"), partition="shared"),
        writer.write(glucose_records(15, "user-2"), partition="shared"),
    )

    users = [user for user, _ in store.log]
    assert users == ["user-1"] * 3 + ["user-2"] * 3


async def test_partitions_default_to_user() -> None:
    store = FakeMetricStore(delay=0.001)
    writer = BatchWriter(store, chunk_size=5)

    results = await asyncio.gather(
        writer.write(glucose_records(10, "user-1")),
        writer.write(glucose_records(10, "user-2")),
    )

    assert results == [10, 10]
    # Different users run concurrently
    assert [user for user, _ in store.log] != ["user-1", "user-1", "user-2", "user-2"]


def test_chunk_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BatchWriter(FakeMetricStore(), chunk_size=0)


@pytest.mark.parametrize(
    "error",
    [RuntimeError("connection reset by driver"), KeyError("value"), TypeError("bad row")],
)
async def test_any_chunk_failure_is_skipped(error: Exception) -> None:
    store = FakeMetricStore(fail_calls={0}, error=error)
    writer = BatchWriter(store, chunk_size=10)

    written = await writer.write(glucose_records(30))

    assert written == 20
    assert store.calls == 3
    assert writer.last_failed_chunks == [0]


async def test_partition_locks_are_released() -> None:
    store = FakeMetricStore(delay=0.001)
    writer = BatchWriter(store, chunk_size=5)

    await asyncio.gather(
        writer.write(glucose_records(10, "user-1")),
        writer.write(glucose_records(10, "user-1")),
        writer.write(glucose_records(10, "user-2")),
    )
    assert writer.active_partitions == 0

    store.fail_calls = set(range(store.calls, store.calls + 2))
    await writer.write(glucose_records(10, "user-3"))
    assert writer.active_partitions == 0
