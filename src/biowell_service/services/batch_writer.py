"""Best-effort chunked persistence of health observations.

Records are cut into fixed-size chunks and each chunk is written in its
own transaction. A failing chunk is logged and skipped; later chunks are
still attempted, so a write may persist fewer records than it was given.
Callers treat the returned count as the outcome, not as a transaction.

Writes to the same partition (by default the records' user id) are
serialized; writes to different partitions run concurrently.
"""

import asyncio
from collections.abc import Iterator, Sequence

import structlog

from biowell_service.schemas.metrics import HealthMetricRecord
from biowell_service.services.storage import MetricStore

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 100


def chunked(
    records: Sequence[HealthMetricRecord], size: int
) -> Iterator[Sequence[HealthMetricRecord]]:
    for start in range(0, len(records), size):
        yield records[start : start + size]


class BatchWriter:
    """Chunked writer over a MetricStore.

    Attributes:
        store: Storage collaborator receiving each chunk
        chunk_size: Records per chunk
        last_failed_chunks: Indices of chunks that failed in the latest write
    """

    def __init__(self, store: MetricStore, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.store = store
        self.chunk_size = chunk_size
        self.last_failed_chunks: list[int] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self.logger = logger.bind(component="batch_writer")

    @property
    def active_partitions(self) -> int:
        """Partitions with a write running or waiting."""
        return len(self._locks)

    def _acquire(self, partition: str) -> asyncio.Lock:
        lock = self._locks.get(partition)
        if lock is None:
            lock = self._locks[partition] = asyncio.Lock()
        self._lock_users[partition] = self._lock_users.get(partition, 0) + 1
        return lock

    def _release(self, partition: str) -> None:
        # The last writer of a partition drops its lock
        self._lock_users[partition] -= 1
        if not self._lock_users[partition]:
            del self._lock_users[partition]
            del self._locks[partition]

    async def write(
        self,
        records: Sequence[HealthMetricRecord],
        partition: str | None = None,
    ) -> int:
        """Persist records chunk by chunk.

        Args:
            records: Records to persist
            partition: Serialization key (defaults to the first record's user id)

        Returns:
            Number of records in chunks that were written successfully
        """
        if not records:
            return 0

        partition = partition or records[0].user_id
        lock = self._acquire(partition)
        try:
            async with lock:
                return await self._write_chunks(records, partition)
        finally:
            self._release(partition)

    async def _write_chunks(self, records: Sequence[HealthMetricRecord], partition: str) -> int:
        persisted = 0
        failed: list[int] = []
        total_chunks = (len(records) + self.chunk_size - 1) // self.chunk_size

        for index, chunk in enumerate(chunked(records, self.chunk_size)):
            try:
                await self.store.insert_many(chunk)
            except Exception as e:
                failed.append(index)
                self.logger.warning(
                    "Chunk write failed, continuing",
                    partition=partition,
                    chunk_index=index,
                    chunk_size=len(chunk),
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                )
                continue
            persisted += len(chunk)

        self.last_failed_chunks = failed
        self.logger.info(
            "Batch write finished",
            partition=partition,
            records=len(records),
            persisted=persisted,
            chunks=total_chunks,
            failed_chunks=len(failed),
        )
        return persisted
