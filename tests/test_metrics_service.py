"""Tests for the health metrics service."""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from biowell_service.core.cache import CacheService
from biowell_service.core.errors import AppError, ErrorCode, ErrorHandler, Severity
from biowell_service.core.timing import OperationTimer
from biowell_service.schemas.metrics import HealthMetricRecord, MetricSource, MetricType
from biowell_service.services.batch_writer import BatchWriter
from biowell_service.services.metrics import HealthMetricsService, percent_change
from biowell_service.services.storage import SqlMetricStore

NOW = datetime(2026, 10, 19, 10, 30, tzinfo=UTC)


class ListMetricStore:
    """In-memory store with optional read failures."""

    def __init__(self, records: Sequence[HealthMetricRecord] = ()) -> None:
        self.records = list(records)
        self.read_error: Exception | None = None
        self.reads = 0

    async def insert_many(self, records: Sequence[HealthMetricRecord]) -> int:
        self.records.extend(records)
        return len(records)

    async def list_metrics(
        self,
        user_id: str,
        metric_type: MetricType | None = None,
        limit: int = 50,
    ) -> list[HealthMetricRecord]:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        matching = [
            r
            for r in self.records
            if r.user_id == user_id and (metric_type is None or r.metric_type is metric_type)
        ]
        matching.sort(key=lambda r: r.timestamp, reverse=True)
        return matching[:limit]

    async def count(self, user_id: str) -> int:
        return sum(1 for r in self.records if r.user_id == user_id)


def hrv_series(values: list[float]) -> list[HealthMetricRecord]:
    """Daily HRV values, oldest first."""
    start = NOW - timedelta(days=len(values))
    return [
        HealthMetricRecord(
            user_id="user-1",
            metric_type=MetricType.HRV,
            value=value,
            unit="ms",
            timestamp=start + timedelta(days=i),
            source=MetricSource.WEARABLE,
        )
        for i, value in enumerate(values)
    ]


@pytest.fixture
def make_service(cache: CacheService, timer: OperationTimer, error_handler: ErrorHandler):
    def factory(store, **kwargs) -> HealthMetricsService:
        kwargs.setdefault("clock", lambda: NOW)
        return HealthMetricsService(
            store,
            BatchWriter(store, chunk_size=100),
            cache,
            timer,
            error_handler,
            **kwargs,
        )

    return factory


class TestGetMetrics:
    """Tests for the read path."""

    async def test_first_read_seeds_history(self, make_service, session_factory) -> None:
        store = SqlMetricStore(session_factory)
        service = make_service(store)

        records = await service.get_metrics("user-1", MetricType.GLUCOSE, limit=10)

        assert len(records) == 10
        assert all(r.source is MetricSource.CGM for r in records)
        assert records[0].timestamp == NOW
        assert await store.count("user-1") > 14 * 18

    async def test_history_is_seeded_once(self, make_service) -> None:
        store = ListMetricStore()
        service = make_service(store)

        await service.get_metrics("user-1")
        seeded = len(store.records)
        service.invalidate("user-1")
        await service.get_metrics("user-1")

        assert seeded > 0
        assert len(store.records) == seeded

    async def test_seeded_users_are_bounded(self, make_service) -> None:
        service = make_service(ListMetricStore(), max_seeded_users=2)

        for user_id in ("user-1", "user-2", "user-3"):
            await service.get_metrics(user_id, MetricType.HRV)

        assert list(service._seeded) == ["user-2", "user-3"]

    async def test_auto_seed_disabled(self, make_service) -> None:
        store = ListMetricStore()
        service = make_service(store, auto_seed=False)

        assert await service.get_metrics("user-1") == []
        assert store.records == []

    async def test_reads_are_cached(self, make_service) -> None:
        store = ListMetricStore(hrv_series([40, 42, 44]))
        service = make_service(store)

        first = await service.get_metrics("user-1", MetricType.HRV)
        second = await service.get_metrics("user-1", MetricType.HRV)

        assert first == second
        assert store.reads == 1

    async def test_empty_results_are_not_cached(self, make_service) -> None:
        store = ListMetricStore()
        service = make_service(store, auto_seed=False)

        await service.get_metrics("user-1")
        await service.get_metrics("user-1")

        assert store.reads == 2

    async def test_store_failure_falls_back_to_mock(
        self, make_service, cache: CacheService, notifier
    ) -> None:
        store = ListMetricStore()
        store.read_error = OperationalError("SELECT", {}, Exception("connection refused"))
        service = make_service(store)

        records = await service.get_metrics("user-1", MetricType.GLUCOSE, limit=20)

        assert len(records) == 20
        assert {r.source for r in records} == {MetricSource.MOCK}
        assert {r.metric_type for r in records} == {MetricType.GLUCOSE}
        assert len(cache) == 0
        assert store.records == []
        [(error, _)] = notifier.notifications
        assert error.code is ErrorCode.DATABASE_ERROR

    async def test_high_severity_failure_is_raised(self, make_service) -> None:
        store = ListMetricStore()
        store.read_error = AppError(
            "Credentials rejected", code=ErrorCode.AUTH_ERROR, severity=Severity.HIGH
        )
        service = make_service(store)

        with pytest.raises(AppError) as exc_info:
            await service.get_metrics("user-1")

        assert exc_info.value.code is ErrorCode.AUTH_ERROR

    async def test_read_timeout_falls_back(self, make_service) -> None:
        store = ListMetricStore()
        store.read_error = TimeoutError()
        service = make_service(store)

        records = await service.get_metrics("user-1", MetricType.STEPS)

        assert records
        assert all(r.source is MetricSource.MOCK for r in records)


class TestSeedHistory:
    """Tests for explicit seeding."""

    async def test_seed_is_reproducible(self, make_service) -> None:
        first_store, second_store = ListMetricStore(), ListMetricStore()

        await make_service(first_store).seed_history("user-1", seed=42)
        await make_service(second_store).seed_history("user-1", seed=42)

        assert [r.value for r in first_store.records] == [r.value for r in second_store.records]

    async def test_seed_invalidates_cached_reads(self, make_service) -> None:
        store = ListMetricStore(hrv_series([40, 42]))
        service = make_service(store)
        await service.get_metrics("user-1", MetricType.HRV)

        await service.seed_history("user-1", seed=1)
        records = await service.get_metrics("user-1", MetricType.HRV)

        assert store.reads == 2
        assert len(records) > 2


class TestAggregates:
    """Tests for latest, trend and summary."""

    async def test_latest(self, make_service) -> None:
        service = make_service(ListMetricStore(hrv_series([40, 50, 45])))

        latest = await service.latest("user-1", MetricType.HRV)

        assert latest is not None
        assert latest.value == 45

    async def test_trend_over_last_samples(self, make_service) -> None:
        service = make_service(ListMetricStore(hrv_series([30, 40, 41, 42, 43, 44, 45, 46, 50])))

        # Last seven samples: 41 ... 50
        assert await service.trend("user-1", MetricType.HRV) == percent_change(50, 41)

    async def test_trend_needs_two_samples(self, make_service) -> None:
        service = make_service(ListMetricStore(hrv_series([40])))
        assert await service.trend("user-1", MetricType.HRV) == 0.0

    async def test_summary(self, make_service) -> None:
        service = make_service(ListMetricStore(hrv_series([40, 50, 45])), auto_seed=False)

        summary = await service.summary("user-1")

        hrv = summary["hrv"]
        assert hrv.latest == 45
        assert hrv.minimum == 40
        assert hrv.maximum == 50
        assert hrv.average == 45.0
        assert hrv.count == 3
        assert hrv.unit == "ms"
        assert summary["glucose"].count == 0
        assert summary["glucose"].unit == "mg/dL"

    async def test_summary_over_fallback_is_not_cached(
        self, make_service, cache: CacheService
    ) -> None:
        store = ListMetricStore()
        store.read_error = OperationalError("SELECT", {}, Exception("connection refused"))
        service = make_service(store, auto_seed=False)

        degraded = await service.summary("user-1")
        assert degraded["glucose"].count > 0
        assert len(cache) == 0

        store.read_error = None
        recovered = await service.summary("user-1")

        assert recovered["glucose"].count == 0
        assert recovered["hrv"].count == 0


def test_percent_change() -> None:
    assert percent_change(110, 100) == 10.0
    assert percent_change(90, 100) == -10.0
    assert percent_change(5, 0) == 0.0
