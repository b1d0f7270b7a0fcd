"""Shared test fixtures."""

from collections.abc import AsyncIterator

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from biowell_service.core.cache import CacheService
from biowell_service.core.config import Settings
from biowell_service.core.database import create_engine, create_session_factory, init_database
from biowell_service.core.errors import AppError, ErrorHandler
from biowell_service.core.timing import OperationTimer


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Notifier that keeps every notification."""

    def __init__(self) -> None:
        self.notifications: list[tuple[AppError, str]] = []

    def notify(self, error: AppError, message: str) -> None:
        self.notifications.append((error, message))


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory instance."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        service_base_url="http://services.test/functions/v1",
        service_auth_token="test-token",
        cache_sweep_interval_seconds=0,
        request_retry_base_delay_seconds=0,
    )


@pytest.fixture
async def async_engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    """Create async SQLite engine for testing."""
    engine = create_engine(settings)

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_database(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reported() -> list[AppError]:
    """Errors passed to the external reporter."""
    return []


@pytest.fixture
def error_handler(notifier: RecordingNotifier, reported: list[AppError]) -> ErrorHandler:
    return ErrorHandler(notifier=notifier, reporter=reported.append)


@pytest.fixture
def cache() -> CacheService:
    return CacheService(max_entries=100)


@pytest.fixture
def timer() -> OperationTimer:
    return OperationTimer()
