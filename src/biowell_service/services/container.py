"""Explicitly constructed service graph.

The app lifespan builds one ``ServiceContainer`` and hands it to route
handlers through dependency injection; tests build their own. There is no
module-level cache, session pointer or client.
"""

from collections import OrderedDict

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from biowell_service.core.cache import CacheService
from biowell_service.core.config import Settings
from biowell_service.core.database import (
    close_database,
    create_engine,
    create_session_factory,
    init_database,
)
from biowell_service.core.errors import ErrorHandler
from biowell_service.core.timing import OperationTimer
from biowell_service.services.batch_writer import BatchWriter
from biowell_service.services.chat import ChatSessionService
from biowell_service.services.clients import ServiceClient
from biowell_service.services.metrics import HealthMetricsService
from biowell_service.services.scheduler import CacheSweeper
from biowell_service.services.storage import SqlChatStore, SqlMetricStore, SqlProfileStore

logger = structlog.get_logger()


class ServiceContainer:
    """All long-lived services of one application instance."""

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        timer: OperationTimer,
        error_handler: ErrorHandler,
        metric_store: SqlMetricStore,
        chat_store: SqlChatStore,
        profile_store: SqlProfileStore,
        batch_writer: BatchWriter,
        metrics: HealthMetricsService,
        clients: ServiceClient,
        sweeper: CacheSweeper,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.session_factory = session_factory
        self.cache = cache
        self.timer = timer
        self.error_handler = error_handler
        self.metric_store = metric_store
        self.chat_store = chat_store
        self.profile_store = profile_store
        self.batch_writer = batch_writer
        self.metrics = metrics
        self.clients = clients
        self.sweeper = sweeper
        self._chat_services: OrderedDict[str, ChatSessionService] = OrderedDict()

    @classmethod
    async def create(
        cls,
        config: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceContainer":
        """Build the service graph and make sure the schema exists.

        Args:
            config: Application settings
            transport: httpx transport for the external services (tests)
        """
        engine = create_engine(config)
        await init_database(engine)
        session_factory = create_session_factory(engine)

        cache = CacheService(max_entries=config.cache_max_entries)
        timer = OperationTimer()
        error_handler = ErrorHandler()
        metric_store = SqlMetricStore(session_factory)
        batch_writer = BatchWriter(metric_store, chunk_size=config.batch_size)

        metrics = HealthMetricsService(
            metric_store,
            batch_writer,
            cache,
            timer,
            error_handler,
            ttl_seconds=config.metrics_cache_ttl_seconds,
            timeout=config.request_timeout_seconds,
            auto_seed=config.auto_seed_metrics,
            wearable_days=config.wearable_history_days,
            cgm_days=config.cgm_history_days,
        )

        return cls(
            settings=config,
            engine=engine,
            session_factory=session_factory,
            cache=cache,
            timer=timer,
            error_handler=error_handler,
            metric_store=metric_store,
            chat_store=SqlChatStore(session_factory),
            profile_store=SqlProfileStore(session_factory),
            batch_writer=batch_writer,
            metrics=metrics,
            clients=ServiceClient.from_settings(
                config, cache, timer, error_handler, transport=transport
            ),
            sweeper=CacheSweeper(cache, interval_seconds=config.cache_sweep_interval_seconds),
        )

    def chat_for(self, user_id: str) -> ChatSessionService:
        """The chat orchestrator owning ``user_id``'s sessions.

        At most ``chat_services_max_users`` orchestrators are kept; the least
        recently used idle ones are dropped first and rebuilt from the store
        on their next use.
        """
        service = self._chat_services.get(user_id)
        if service is not None:
            self._chat_services.move_to_end(user_id)
            return service

        service = ChatSessionService(
            user_id,
            completion=self.clients,
            store=self.chat_store,
            error_handler=self.error_handler,
        )
        self._chat_services[user_id] = service
        self._evict_idle_chat_services(keep=user_id)
        return service

    def _evict_idle_chat_services(self, keep: str) -> None:
        excess = len(self._chat_services) - self.settings.chat_services_max_users
        if excess <= 0:
            return
        idle = [
            user_id
            for user_id, service in self._chat_services.items()
            if user_id != keep and service.is_idle
        ]
        for user_id in idle[:excess]:
            del self._chat_services[user_id]
            logger.debug("Chat service evicted", user_id=user_id)

    async def start(self) -> None:
        await self.sweeper.start()

    async def close(self) -> None:
        """Stop background work and release connections."""
        await self.sweeper.stop()
        await self.clients.aclose()
        await close_database(self.engine)
        logger.info("Services closed")
