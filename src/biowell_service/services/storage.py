"""Persistent store collaborators.

Services depend on the small protocols below; the SQLAlchemy
implementations open one session per operation from a shared
``async_sessionmaker``. Failures surface as ``SQLAlchemyError`` and are
classified as ``DATABASE_ERROR`` by the error handler.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from biowell_service.core.database import get_session
from biowell_service.models.base import as_utc, generate_uuid
from biowell_service.models.chat import ChatMessageRecord, ChatSessionRecord
from biowell_service.models.health_metric import HealthMetric
from biowell_service.models.profile import UserProfile
from biowell_service.schemas.chat import ChatMessage, ChatRole, ChatSession
from biowell_service.schemas.metrics import HealthMetricRecord, MetricSource, MetricType
from biowell_service.schemas.profile import Profile, ProfileUpdate

logger = structlog.get_logger()

METRIC_CONFLICT_COLUMNS = ["user_id", "metric_type", "timestamp", "source"]
LIST_FIELDS = ("health_goals", "medical_conditions")


class MetricStore(Protocol):
    """Bulk storage of health observations."""

    async def insert_many(self, records: Sequence[HealthMetricRecord]) -> int: ...

    async def list_metrics(
        self,
        user_id: str,
        metric_type: MetricType | None = None,
        limit: int = 50,
    ) -> list[HealthMetricRecord]: ...

    async def count(self, user_id: str) -> int: ...


class ChatStore(Protocol):
    """Chat sessions and confirmed messages."""

    async def create_session(self, user_id: str, title: str) -> ChatSession: ...

    async def list_sessions(self, user_id: str) -> list[ChatSession]: ...

    async def get_session(self, user_id: str, session_id: str) -> ChatSession | None: ...

    async def update_session(self, session: ChatSession) -> None: ...

    async def add_messages(
        self, user_id: str, session_id: str, messages: Sequence[ChatMessage]
    ) -> None: ...

    async def list_messages(self, user_id: str, session_id: str) -> list[ChatMessage]: ...


class ProfileStore(Protocol):
    """User profile records."""

    async def get_profile(self, user_id: str) -> Profile | None: ...

    async def upsert_profile(self, user_id: str, update: ProfileUpdate) -> Profile: ...


# =============================================================================
# SQLAlchemy implementations
# =============================================================================


def _metric_from_row(row: HealthMetric) -> HealthMetricRecord:
    return HealthMetricRecord(
        user_id=row.user_id,
        metric_type=MetricType(row.metric_type),
        value=row.value,
        unit=row.unit,
        timestamp=as_utc(row.timestamp),
        source=MetricSource(row.source),
        metadata=dict(row.details or {}),
    )


class SqlMetricStore:
    """Health metric storage backed by the ``health_metrics`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.logger = logger.bind(component="metric_store")

    async def insert_many(self, records: Sequence[HealthMetricRecord]) -> int:
        """Insert records in one transaction, ignoring rows that already exist.

        Args:
            records: Records to insert

        Returns:
            Number of records now persisted
        """
        if not records:
            return 0

        now = datetime.now(UTC)
        rows = [
            {
                "id": generate_uuid(),
                "user_id": record.user_id,
                "metric_type": record.metric_type.value,
                "value": record.value,
                "unit": record.unit,
                "timestamp": record.timestamp,
                "source": record.source.value,
                "details": record.metadata,
                "created_at": now,
                "updated_at": now,
            }
            for record in records
        ]

        async with get_session(self.session_factory) as session:
            dialect = session.get_bind().dialect.name
            insert = sqlite_insert if dialect == "sqlite" else postgresql_insert
            stmt = insert(HealthMetric).on_conflict_do_nothing(
                index_elements=METRIC_CONFLICT_COLUMNS
            )
            await session.execute(stmt, rows)

        self.logger.debug("Inserted metrics", count=len(rows))
        return len(rows)

    async def list_metrics(
        self,
        user_id: str,
        metric_type: MetricType | None = None,
        limit: int = 50,
    ) -> list[HealthMetricRecord]:
        """Most recent observations for a user, newest first."""
        stmt = select(HealthMetric).where(HealthMetric.user_id == user_id)
        if metric_type is not None:
            stmt = stmt.where(HealthMetric.metric_type == metric_type.value)
        stmt = stmt.order_by(HealthMetric.timestamp.desc()).limit(limit)

        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        return [_metric_from_row(row) for row in rows]

    async def count(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(HealthMetric)
            .where(HealthMetric.user_id == user_id)
        )
        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())


def _session_from_row(row: ChatSessionRecord) -> ChatSession:
    return ChatSession(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        last_message=row.last_message,
        message_count=row.message_count,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _message_from_row(row: ChatMessageRecord) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        role=ChatRole(row.role),
        text=row.text,
        timestamp=as_utc(row.timestamp),
        detail=row.detail,
    )


class SqlChatStore:
    """Chat storage backed by ``chat_sessions`` and ``chat_messages``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create_session(self, user_id: str, title: str) -> ChatSession:
        record = ChatSessionRecord(user_id=user_id, title=title, message_count=0)
        async with get_session(self.session_factory) as session:
            session.add(record)
            await session.flush()
            await session.refresh(record)
            return _session_from_row(record)

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        """Sessions for a user, most recently updated first."""
        stmt = (
            select(ChatSessionRecord)
            .where(ChatSessionRecord.user_id == user_id)
            .order_by(ChatSessionRecord.updated_at.desc())
        )
        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            return [_session_from_row(row) for row in result.scalars().all()]

    async def get_session(self, user_id: str, session_id: str) -> ChatSession | None:
        stmt = select(ChatSessionRecord).where(
            ChatSessionRecord.id == session_id,
            ChatSessionRecord.user_id == user_id,
        )
        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _session_from_row(row) if row else None

    async def update_session(self, chat_session: ChatSession) -> None:
        """Write a session's title and summary fields."""
        stmt = select(ChatSessionRecord).where(
            ChatSessionRecord.id == chat_session.id,
            ChatSessionRecord.user_id == chat_session.user_id,
        )
        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            row = result.scalar_one()
            row.title = chat_session.title
            row.last_message = chat_session.last_message
            row.message_count = chat_session.message_count
            row.updated_at = chat_session.updated_at

    async def add_messages(
        self, user_id: str, session_id: str, messages: Sequence[ChatMessage]
    ) -> None:
        """Append confirmed messages after the last stored one."""
        async with get_session(self.session_factory) as session:
            result = await session.execute(
                select(func.coalesce(func.max(ChatMessageRecord.position), -1)).where(
                    ChatMessageRecord.session_id == session_id
                )
            )
            start = int(result.scalar_one()) + 1
            session.add_all(
                ChatMessageRecord(
                    id=message.id,
                    user_id=user_id,
                    session_id=session_id,
                    role=message.role.value,
                    text=message.text,
                    detail=message.detail,
                    timestamp=message.timestamp,
                    position=start + offset,
                )
                for offset, message in enumerate(messages)
            )

    async def list_messages(self, user_id: str, session_id: str) -> list[ChatMessage]:
        """Confirmed messages of a session in send order."""
        stmt = (
            select(ChatMessageRecord)
            .where(
                ChatMessageRecord.session_id == session_id,
                ChatMessageRecord.user_id == user_id,
            )
            .order_by(ChatMessageRecord.position.asc())
        )
        async with get_session(self.session_factory) as session:
            result = await session.execute(stmt)
            return [_message_from_row(row) for row in result.scalars().all()]


def _profile_from_row(row: UserProfile) -> Profile:
    return Profile(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        age=row.age,
        gender=row.gender,
        activity_level=row.activity_level,
        health_goals=list(row.health_goals or []),
        medical_conditions=list(row.medical_conditions or []),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlProfileStore:
    """Profile storage backed by ``user_profiles``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_profile(self, user_id: str) -> Profile | None:
        async with get_session(self.session_factory) as session:
            row = await session.get(UserProfile, user_id)
            return _profile_from_row(row) if row else None

    async def upsert_profile(self, user_id: str, update: ProfileUpdate) -> Profile:
        """Create the profile if missing, then apply the set fields."""
        async with get_session(self.session_factory) as session:
            row = await session.get(UserProfile, user_id)
            if row is None:
                row = UserProfile(id=user_id, health_goals=[], medical_conditions=[])
                session.add(row)
            for name, value in update.model_dump(exclude_unset=True).items():
                if value is None and name in LIST_FIELDS:
                    value = []
                setattr(row, name, value)
            await session.flush()
            await session.refresh(row)
            return _profile_from_row(row)
