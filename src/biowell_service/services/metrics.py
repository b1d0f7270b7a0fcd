"""Health metrics read path with synthetic seeding and fallback.

``get_metrics`` is the dashboard's entrypoint for observations:

    1. cache hit -> return
    2. timed store read with timeout
    3. no data yet and auto-seeding on -> synthesize history once, write it
       through the batch writer, read again
    4. store failure -> error handler; when fallback is allowed the caller
       gets mock-sourced synthetic records (never cached, never persisted)
"""

import random
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from biowell_service.core.cache import CacheService, cache_key
from biowell_service.core.errors import ErrorCode, ErrorHandler
from biowell_service.core.timing import OperationTimer
from biowell_service.schemas.metrics import (
    PLAUSIBLE_RANGES,
    HealthMetricRecord,
    MetricSource,
    MetricSummary,
    MetricType,
)
from biowell_service.services.batch_writer import BatchWriter
from biowell_service.services.storage import MetricStore
from biowell_service.services.synthesizer import (
    DEFAULT_PROFILE,
    SubjectProfile,
    generate_history,
)

logger = structlog.get_logger()

SUMMARY_SAMPLE_LIMIT = 500
TREND_SAMPLES = 7
MAX_SEEDED_USERS = 10_000


def percent_change(newest: float, oldest: float) -> float:
    if oldest == 0:
        return 0.0
    return round((newest - oldest) / oldest * 100, 2)


class HealthMetricsService:
    """Service for reading, seeding and summarizing health metrics.

    Usage:
        service = HealthMetricsService(store, writer, cache, timer, handler)
        records = await service.get_metrics("user-123", MetricType.GLUCOSE)
    """

    def __init__(
        self,
        store: MetricStore,
        writer: BatchWriter,
        cache: CacheService,
        timer: OperationTimer,
        error_handler: ErrorHandler,
        *,
        ttl_seconds: float = 120,
        timeout: float | None = 15.0,
        auto_seed: bool = True,
        wearable_days: int = 14,
        cgm_days: int = 7,
        profile: SubjectProfile = DEFAULT_PROFILE,
        max_seeded_users: int = MAX_SEEDED_USERS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.writer = writer
        self.cache = cache
        self.timer = timer
        self.error_handler = error_handler
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self.auto_seed = auto_seed
        self.wearable_days = wearable_days
        self.cgm_days = cgm_days
        self.profile = profile
        self.clock = clock
        self.max_seeded_users = max_seeded_users
        self._seeded: OrderedDict[str, None] = OrderedDict()
        self.logger = logger.bind(service="metrics")

    async def get_metrics(
        self,
        user_id: str,
        metric_type: MetricType | None = None,
        limit: int = 50,
    ) -> list[HealthMetricRecord]:
        """Most recent observations for a user, newest first.

        Args:
            user_id: Owner of the observations
            metric_type: Restrict to one metric type
            limit: Maximum number of records

        Returns:
            Stored records, or mock-sourced synthetic records on fallback

        Raises:
            AppError: If the failure does not allow a fallback
        """
        key = cache_key("metrics", user_id, type=metric_type, limit=limit)
        cached = self.cache.get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        computed_at = self.cache.now()
        try:
            records = await self._read(user_id, metric_type, limit)
            if not records and self._should_seed(user_id):
                written = await self.seed_history(user_id)
                if written:
                    records = await self._read(user_id, metric_type, limit)
        except Exception as e:
            outcome = self.error_handler.handle(
                e,
                context={
                    "component": "metrics",
                    "action": "get_metrics",
                    "user_id": user_id,
                    "metric_type": metric_type.value if metric_type else None,
                },
                code=ErrorCode.DATABASE_ERROR,
            )
            if not outcome.allow_fallback:
                raise outcome.error from e
            self.logger.info("Serving synthetic fallback", user_id=user_id)
            return self.synthetic_metrics(user_id, metric_type, limit)

        # An empty result may be mid-seed elsewhere; only cache real data
        if records:
            self.cache.set(key, records, ttl_seconds=self.ttl_seconds, computed_at=computed_at)
        return records

    async def _read(
        self, user_id: str, metric_type: MetricType | None, limit: int
    ) -> list[HealthMetricRecord]:
        return await self.timer.measure(
            "metrics.list_metrics",
            lambda: self.store.list_metrics(user_id, metric_type, limit),
            timeout=self.timeout,
        )

    def _should_seed(self, user_id: str) -> bool:
        # Check and mark without an await in between
        if not self.auto_seed or user_id in self._seeded:
            return False
        self._mark_seeded(user_id)
        return True

    def _mark_seeded(self, user_id: str) -> None:
        # Least recently seeded users are forgotten first
        self._seeded[user_id] = None
        self._seeded.move_to_end(user_id)
        while len(self._seeded) > self.max_seeded_users:
            self._seeded.popitem(last=False)

    async def seed_history(
        self,
        user_id: str,
        seed: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Synthesize wearable and CGM history and persist it.

        Args:
            user_id: Owner of the records
            seed: Random seed for a reproducible history
            now: Generation time (defaults to the service clock)

        Returns:
            Number of records persisted (best effort)
        """
        records = generate_history(
            user_id,
            now or self.clock(),
            wearable_days=self.wearable_days,
            cgm_days=self.cgm_days,
            rng=random.Random(seed),
            profile=self.profile,
        )
        self.logger.info("Seeding synthetic history", user_id=user_id, records=len(records))

        written = await self.timer.measure(
            "metrics.seed_history",
            lambda: self.writer.write(records, partition=user_id),
        )
        self._mark_seeded(user_id)
        self.invalidate(user_id)

        self.logger.info(
            "Synthetic history stored",
            user_id=user_id,
            generated=len(records),
            persisted=written,
        )
        return written

    def synthetic_metrics(
        self,
        user_id: str,
        metric_type: MetricType | None = None,
        limit: int = 50,
    ) -> list[HealthMetricRecord]:
        """Mock-sourced records shaped like a store read."""
        records = generate_history(
            user_id,
            self.clock(),
            wearable_days=self.wearable_days,
            cgm_days=self.cgm_days,
            profile=self.profile,
            mock=True,
        )
        if metric_type is not None:
            records = [r for r in records if r.metric_type is metric_type]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    def invalidate(self, user_id: str) -> None:
        """Drop cached reads for a user."""
        self.cache.invalidate_prefix(f"{cache_key('metrics', user_id)}?")
        self.cache.delete(cache_key("metrics_summary", user_id))

    async def latest(self, user_id: str, metric_type: MetricType) -> HealthMetricRecord | None:
        records = await self.get_metrics(user_id, metric_type, limit=1)
        return records[0] if records else None

    async def trend(
        self,
        user_id: str,
        metric_type: MetricType,
        samples: int = TREND_SAMPLES,
    ) -> float:
        """Percent change from the oldest to the newest of the last ``samples`` values.

        Returns 0 when fewer than two samples exist.
        """
        records = await self.get_metrics(user_id, metric_type, limit=samples)
        if len(records) < 2:
            return 0.0
        return percent_change(records[0].value, records[-1].value)

    async def summary(self, user_id: str) -> dict[str, MetricSummary]:
        """Latest, average, range and trend per metric type."""
        key = cache_key("metrics_summary", user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        computed_at = self.cache.now()
        summaries: dict[str, MetricSummary] = {}
        fell_back = False
        for metric_type in MetricType:
            records = await self.get_metrics(user_id, metric_type, limit=SUMMARY_SAMPLE_LIMIT)
            fell_back = fell_back or any(r.source is MetricSource.MOCK for r in records)
            summaries[metric_type.value] = self._summarize(metric_type, records)

        # Aggregates over fallback records are served but never cached
        if not fell_back and any(s.count for s in summaries.values()):
            self.cache.set(key, summaries, ttl_seconds=self.ttl_seconds, computed_at=computed_at)
        return summaries

    @staticmethod
    def _summarize(metric_type: MetricType, records: list[HealthMetricRecord]) -> MetricSummary:
        unit = PLAUSIBLE_RANGES[metric_type].unit
        if not records:
            return MetricSummary(metric_type=metric_type, unit=unit)

        values = [r.value for r in records]
        recent = values[:TREND_SAMPLES]
        return MetricSummary(
            metric_type=metric_type,
            unit=unit,
            latest=values[0],
            average=round(sum(values) / len(values), 1),
            minimum=min(values),
            maximum=max(values),
            count=len(values),
            trend_percent=percent_change(recent[0], recent[-1]) if len(recent) > 1 else 0.0,
        )
