"""Tests for chat session orchestration."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from biowell_service.core.config import Settings
from biowell_service.core.errors import AppError, ErrorCode, ErrorHandler, Severity
from biowell_service.schemas.chat import ChatMessage, ChatReply, ChatRole
from biowell_service.services.chat import ChatSessionService, ChatState
from biowell_service.services.container import ServiceContainer
from biowell_service.services.storage import SqlChatStore

SENT_AT = datetime(2026, 10, 19, 10, 30, tzinfo=UTC)
SERVER_TIME = SENT_AT + timedelta(seconds=2)


class FakeCompletion:
    """Completion client with scripted replies or failures."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    async def send_chat_message(
        self, text: str, user_id: str, session_id: str | None = None
    ) -> ChatReply:
        self.calls.append((text, user_id, session_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ChatReply(
            response=f"Reply to: {text}",
            timestamp=SERVER_TIME,
            confidence=0.9,
            session_id=session_id,
        )


class FailingMessageStore(SqlChatStore):
    """Chat store whose message writes fail."""

    async def add_messages(
        self, user_id: str, session_id: str, messages: Sequence[ChatMessage]
    ) -> None:
        raise SQLAlchemyError("disk I/O error")


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def store(session_factory) -> SqlChatStore:
    return SqlChatStore(session_factory)


@pytest.fixture
def make_chat(completion: FakeCompletion, error_handler: ErrorHandler):
    def factory(store: SqlChatStore, user_id: str = "user-1") -> ChatSessionService:
        counter = iter(range(1_000_000))
        return ChatSessionService(
            user_id,
            completion,
            store,
            error_handler,
            clock=lambda: SENT_AT,
            id_factory=lambda: f"msg-{next(counter)}",
        )

    return factory


@pytest.fixture
async def chat(make_chat, store: SqlChatStore) -> ChatSessionService:
    service = make_chat(store)
    await service.load_sessions()
    return service


class TestSessions:
    """Tests for session lifecycle."""

    async def test_first_load_creates_a_session(self, chat: ChatSessionService) -> None:
        assert len(chat.sessions) == 1
        assert chat.current_session is not None
        assert chat.current_session.title == "New Chat"
        assert chat.messages == []

    async def test_create_session_keeps_existing_ones(self, chat: ChatSessionService) -> None:
        first = chat.current_session
        assert first is not None

        second = await chat.create_session("Nutrition")
        third = await chat.create_session()

        assert [s.id for s in chat.sessions] == [third.id, second.id, first.id]
        assert chat.current_session == third
        assert chat.state(first.id) is ChatState.IDLE

    async def test_select_unknown_session(self, chat: ChatSessionService) -> None:
        with pytest.raises(AppError) as exc_info:
            await chat.select_session("does-not-exist")

        assert exc_info.value.code is ErrorCode.VALIDATION_ERROR

    async def test_other_users_session_is_unknown(
        self, chat: ChatSessionService, make_chat, store: SqlChatStore
    ) -> None:
        other = make_chat(store, user_id="user-2")
        assert chat.current_session is not None

        with pytest.raises(AppError):
            await other.select_session(chat.current_session.id)

    async def test_history_is_reloaded(
        self, chat: ChatSessionService, make_chat, store: SqlChatStore
    ) -> None:
        await chat.send_message("How did I sleep?")

        fresh = make_chat(store)
        await fresh.load_sessions()

        assert [m.role for m in fresh.messages] == [ChatRole.USER, ChatRole.ASSISTANT]
        assert fresh.messages[1].text == "Reply to: How did I sleep?"
        assert fresh.current_session is not None
        assert fresh.current_session.message_count == 2


class TestSendMessage:
    """Tests for optimistic sends."""

    async def test_confirmed_send(self, chat: ChatSessionService) -> None:
        assistant = await chat.send_message("How did I sleep?")

        assert assistant.role is ChatRole.ASSISTANT
        assert assistant.text == "Reply to: How did I sleep?"

        user, reply = chat.messages
        assert user.text == "How did I sleep?"
        assert user.timestamp == SERVER_TIME
        assert reply == assistant

        session = chat.current_session
        assert session is not None
        assert session.last_message == "Reply to: How did I sleep?"
        assert session.message_count == 2
        assert session.updated_at == SERVER_TIME
        assert chat.state() is ChatState.IDLE
        assert chat.last_outcome() is ChatState.CONFIRMED

    async def test_confirmed_turn_is_persisted(
        self, chat: ChatSessionService, store: SqlChatStore
    ) -> None:
        await chat.send_message("Hello")
        assert chat.current_session is not None

        stored = await store.list_messages("user-1", chat.current_session.id)
        assert [m.id for m in stored] == [m.id for m in chat.messages]

    async def test_failed_send_rolls_back(
        self, chat: ChatSessionService, completion: FakeCompletion, notifier
    ) -> None:
        await chat.send_message("First question")
        messages_before = chat.messages
        session_before = chat.current_session

        request = httpx.Request("POST", "http://services.test/openai-chat")
        completion.error = httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AppError) as exc_info:
            await chat.send_message("Second question")

        assert exc_info.value.code is ErrorCode.API_ERROR
        assert chat.messages == messages_before
        assert chat.current_session == session_before
        assert chat.state() is ChatState.IDLE
        assert chat.last_outcome() is ChatState.ROLLED_BACK
        assert len(notifier.notifications) == 1

    async def test_upstream_app_error_keeps_its_code(
        self, chat: ChatSessionService, completion: FakeCompletion
    ) -> None:
        completion.error = AppError(
            "Rate limit exceeded", code=ErrorCode.RATE_LIMIT_ERROR, severity=Severity.MEDIUM
        )

        with pytest.raises(AppError) as exc_info:
            await chat.send_message("Hello")

        assert exc_info.value.code is ErrorCode.RATE_LIMIT_ERROR
        assert chat.messages == []

    async def test_second_send_while_pending_is_rejected(
        self, chat: ChatSessionService, completion: FakeCompletion
    ) -> None:
        completion.gate = asyncio.Event()

        first = asyncio.create_task(chat.send_message("First"))
        await asyncio.sleep(0)

        assert chat.state() is ChatState.PENDING
        assert [m.text for m in chat.messages] == ["First"]

        with pytest.raises(AppError) as exc_info:
            await chat.send_message("Second")

        assert exc_info.value.code is ErrorCode.MESSAGE_PENDING
        assert exc_info.value.severity is Severity.LOW
        assert len(completion.calls) == 1

        completion.gate.set()
        await first

        assert [m.text for m in chat.messages] == ["First", "Reply to: First"]
        assert chat.state() is ChatState.IDLE

    async def test_other_session_can_send_while_one_is_pending(
        self, chat: ChatSessionService, completion: FakeCompletion
    ) -> None:
        first_session = chat.current_session
        assert first_session is not None
        completion.gate = asyncio.Event()

        pending = asyncio.create_task(chat.send_message("Slow"))
        await asyncio.sleep(0)

        await chat.create_session("Second thread")
        completion.gate.set()
        await chat.send_message("Fast")
        await pending

        assert [m.text for m in chat.messages_for(first_session.id)] == [
            "Slow",
            "Reply to: Slow",
        ]
        assert [m.text for m in chat.messages] == ["Fast", "Reply to: Fast"]

    async def test_cancelled_send_rolls_back(
        self, chat: ChatSessionService, completion: FakeCompletion
    ) -> None:
        completion.gate = asyncio.Event()

        task = asyncio.create_task(chat.send_message("Never answered"))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert chat.messages == []
        assert chat.state() is ChatState.IDLE

    async def test_empty_text_is_rejected(
        self, chat: ChatSessionService, completion: FakeCompletion
    ) -> None:
        with pytest.raises(AppError) as exc_info:
            await chat.send_message("   ")

        assert exc_info.value.code is ErrorCode.VALIDATION_ERROR
        assert completion.calls == []

    async def test_no_session_is_rejected(self, make_chat, store: SqlChatStore) -> None:
        chat = make_chat(store)

        with pytest.raises(AppError) as exc_info:
            await chat.send_message("Hello")

        assert exc_info.value.code is ErrorCode.VALIDATION_ERROR

    async def test_persist_failure_keeps_confirmed_turn(
        self, make_chat, session_factory, reported: list[AppError]
    ) -> None:
        chat = make_chat(FailingMessageStore(session_factory))
        await chat.load_sessions()

        await chat.send_message("Hello")

        assert len(chat.messages) == 2
        assert chat.last_outcome() is ChatState.CONFIRMED
        [error] = reported
        assert error.code is ErrorCode.DATABASE_ERROR
        assert error.severity is Severity.LOW


class TestChatServiceRegistry:
    """Tests for the per-user orchestrators held by the service container."""

    @pytest.fixture
    async def container(self, settings: Settings):
        container = await ServiceContainer.create(
            settings.model_copy(update={"chat_services_max_users": 2})
        )
        yield container
        await container.close()

    async def test_least_recently_used_idle_service_is_evicted(
        self, container: ServiceContainer
    ) -> None:
        first = container.chat_for("user-1")
        container.chat_for("user-2")
        assert container.chat_for("user-1") is first

        container.chat_for("user-3")

        assert list(container._chat_services) == ["user-1", "user-3"]

    async def test_service_with_pending_send_is_kept(
        self, container: ServiceContainer, completion: FakeCompletion
    ) -> None:
        busy = container.chat_for("user-1")
        busy.completion = completion
        await busy.load_sessions()
        completion.gate = asyncio.Event()

        pending = asyncio.create_task(busy.send_message("Still thinking"))
        await asyncio.sleep(0)
        assert not busy.is_idle

        container.chat_for("user-2")
        container.chat_for("user-3")

        assert container.chat_for("user-1") is busy
        assert "user-2" not in container._chat_services

        completion.gate.set()
        await pending
        assert busy.is_idle
