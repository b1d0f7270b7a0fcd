"""Chat session orchestration with optimistic sends.

Each session runs a small state machine:

    IDLE --send--> PENDING(draft) --reply--> CONFIRMED --> IDLE
                                  --error--> ROLLED_BACK --> IDLE

On send the user's message is appended to the visible list straight away
with a locally generated id and the send time. When the completion service
replies, the draft's timestamp is replaced by the server's, the assistant
reply is appended and the session summary is updated. When it fails, the
draft is removed so the list is exactly what it was before the send.

Only one send may be pending per session. The pending check and the
transition to PENDING happen before the first await, so two rapid sends
cannot both pass the check.
"""

from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, TypeVar
from uuid import uuid4

import structlog

from biowell_service.core.errors import AppError, ErrorCode, ErrorHandler, Severity
from biowell_service.schemas.chat import ChatMessage, ChatReply, ChatRole, ChatSession
from biowell_service.services.storage import ChatStore

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_SESSION_TITLE = "New Chat"
LAST_MESSAGE_PREVIEW_CHARS = 200


class ChatState(str, Enum):
    """Send state of one chat session.

    Attributes:
        IDLE: No send in flight
        PENDING: A draft is shown and the completion call is in flight
        CONFIRMED: The last send succeeded
        ROLLED_BACK: The last send failed and its draft was removed
    """

    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class CompletionClient(Protocol):
    """Anything that can produce an assistant reply."""

    async def send_chat_message(
        self, text: str, user_id: str, session_id: str | None = None
    ) -> ChatReply: ...


class ChatSessionService:
    """Owns one user's chat sessions, message lists and the current-session pointer.

    Construct one per user; nothing here is shared between instances.

    Usage:
        chat = ChatSessionService(user_id, client, store, handler)
        await chat.load_sessions()
        reply = await chat.send_message("How did I sleep?")
    """

    def __init__(
        self,
        user_id: str,
        completion: CompletionClient,
        store: ChatStore,
        error_handler: ErrorHandler,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        """Initialize chat service.

        Args:
            user_id: Owner of the sessions
            completion: Completion service client
            store: Persistent chat store
            error_handler: Handler receiving every failure
            clock: Source of send timestamps
            id_factory: Generator of message ids
        """
        self.user_id = user_id
        self.completion = completion
        self.store = store
        self.error_handler = error_handler
        self.clock = clock
        self.id_factory = id_factory
        self.sessions: list[ChatSession] = []
        self.current_session: ChatSession | None = None
        self._messages: dict[str, list[ChatMessage]] = {}
        self._states: dict[str, ChatState] = {}
        self._outcomes: dict[str, ChatState] = {}
        self.logger = logger.bind(service="chat", user_id=user_id)

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def messages(self) -> list[ChatMessage]:
        """Copy of the current session's visible messages."""
        if self.current_session is None:
            return []
        return self.messages_for(self.current_session.id)

    def messages_for(self, session_id: str) -> list[ChatMessage]:
        return list(self._messages.get(session_id, []))

    def state(self, session_id: str | None = None) -> ChatState:
        session_id = session_id or self._current_id()
        return self._states.get(session_id, ChatState.IDLE) if session_id else ChatState.IDLE

    def last_outcome(self, session_id: str | None = None) -> ChatState | None:
        """CONFIRMED or ROLLED_BACK for the latest finished send, if any."""
        session_id = session_id or self._current_id()
        return self._outcomes.get(session_id) if session_id else None

    @property
    def is_idle(self) -> bool:
        """No send is in flight in any session."""
        return all(state is not ChatState.PENDING for state in self._states.values())

    def _current_id(self) -> str | None:
        return self.current_session.id if self.current_session else None

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def load_sessions(self) -> list[ChatSession]:
        """Load sessions, then select the newest or create the first one."""
        sessions = await self._store_call("load_sessions", self.store.list_sessions(self.user_id))
        self.sessions = list(sessions)

        if not self.sessions:
            await self.create_session()
        elif self.current_session is None or self._find(self.current_session.id) is None:
            await self.select_session(self.sessions[0].id)

        return list(self.sessions)

    async def create_session(self, title: str | None = None) -> ChatSession:
        """Create a session and make it current. Existing sessions are kept."""
        session = await self._store_call(
            "create_session",
            self.store.create_session(self.user_id, title or DEFAULT_SESSION_TITLE),
        )
        self.sessions.insert(0, session)
        self._messages[session.id] = []
        self._states[session.id] = ChatState.IDLE
        self.current_session = session
        self.logger.info("Chat session created", session_id=session.id)
        return session

    async def select_session(self, session_id: str) -> ChatSession:
        """Make a session current and load its history.

        Raises:
            AppError: VALIDATION_ERROR if the session does not belong to the user
        """
        session = self._find(session_id)
        if session is None:
            session = await self._store_call(
                "select_session", self.store.get_session(self.user_id, session_id)
            )
            if session is None:
                raise self._reject(
                    ErrorCode.VALIDATION_ERROR,
                    "Unknown chat session",
                    action="select_session",
                    session_id=session_id,
                )
            self.sessions.append(session)

        # A session with a send in flight keeps its in-memory list
        if self.state(session_id) is not ChatState.PENDING:
            history = await self._store_call(
                "select_session", self.store.list_messages(self.user_id, session_id)
            )
            if self.state(session_id) is not ChatState.PENDING:
                self._messages[session_id] = list(history)

        self.current_session = session
        return session

    def _find(self, session_id: str) -> ChatSession | None:
        return next((s for s in self.sessions if s.id == session_id), None)

    def _replace(self, updated: ChatSession) -> None:
        self.sessions = [updated if s.id == updated.id else s for s in self.sessions]
        if self.current_session is not None and self.current_session.id == updated.id:
            self.current_session = updated

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_message(self, text: str) -> ChatMessage:
        """Send a message in the current session.

        Args:
            text: Message text

        Returns:
            The assistant's reply message

        Raises:
            AppError: MESSAGE_PENDING while another send is in flight,
                VALIDATION_ERROR for empty text or no current session, or the
                completion failure after the draft was rolled back
        """
        session = self.current_session
        if session is None:
            raise self._reject(ErrorCode.VALIDATION_ERROR, "No chat session selected")
        if not text.strip():
            raise self._reject(
                ErrorCode.VALIDATION_ERROR, "Message text is empty", session_id=session.id
            )
        if self.state(session.id) is ChatState.PENDING:
            raise self._reject(
                ErrorCode.MESSAGE_PENDING, "Message already sending", session_id=session.id
            )

        # Idle -> Pending, no await before this point
        draft = ChatMessage(
            id=self.id_factory(),
            role=ChatRole.USER,
            text=text,
            timestamp=self.clock(),
        )
        self._states[session.id] = ChatState.PENDING
        self._messages.setdefault(session.id, []).append(draft)

        try:
            reply = await self.completion.send_chat_message(text, self.user_id, session.id)
        except Exception as e:
            self._roll_back(session.id, draft)
            outcome = self.error_handler.handle(
                e,
                context={"component": "chat", "action": "send_message", "session_id": session.id},
                code=ErrorCode.API_ERROR,
            )
            raise outcome.error from e
        except BaseException:
            self._roll_back(session.id, draft)
            raise

        return await self._confirm(session.id, draft, reply)

    def _roll_back(self, session_id: str, draft: ChatMessage) -> None:
        messages = self._messages.get(session_id, [])
        messages[:] = [m for m in messages if m.id != draft.id]
        self._states[session_id] = ChatState.IDLE
        self._outcomes[session_id] = ChatState.ROLLED_BACK
        self.logger.info("Chat send rolled back", session_id=session_id, draft_id=draft.id)

    async def _confirm(self, session_id: str, draft: ChatMessage, reply: ChatReply) -> ChatMessage:
        messages = self._messages.setdefault(session_id, [])
        confirmed = draft.model_copy(update={"timestamp": reply.timestamp})
        messages[:] = [confirmed if m.id == draft.id else m for m in messages]

        assistant = ChatMessage(
            id=self.id_factory(),
            role=ChatRole.ASSISTANT,
            text=reply.response,
            timestamp=reply.timestamp,
            detail=reply.detail,
        )
        messages.append(assistant)

        session = self._find(session_id)
        updated: ChatSession | None = None
        if session is not None:
            updated = session.model_copy(
                update={
                    "last_message": reply.response[:LAST_MESSAGE_PREVIEW_CHARS],
                    "message_count": session.message_count + 2,
                    "updated_at": reply.timestamp,
                }
            )
            self._replace(updated)

        self._states[session_id] = ChatState.IDLE
        self._outcomes[session_id] = ChatState.CONFIRMED
        self.logger.info("Chat send confirmed", session_id=session_id, confidence=reply.confidence)

        await self._persist(session_id, updated, [confirmed, assistant])
        return assistant

    async def _persist(
        self,
        session_id: str,
        session: ChatSession | None,
        messages: Sequence[ChatMessage],
    ) -> None:
        """Store a confirmed turn. Failure is logged; the turn stays visible."""
        try:
            await self.store.add_messages(self.user_id, session_id, messages)
            if session is not None:
                await self.store.update_session(session)
        except Exception as e:
            self.error_handler.handle(
                AppError(
                    f"Failed to store chat turn: {e}",
                    code=ErrorCode.DATABASE_ERROR,
                    severity=Severity.LOW,
                    context={"component": "chat", "action": "persist", "session_id": session_id},
                )
            )

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    async def _store_call(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except Exception as e:
            outcome = self.error_handler.handle(
                e,
                context={"component": "chat", "action": action, "user_id": self.user_id},
                code=ErrorCode.DATABASE_ERROR,
            )
            raise outcome.error from e

    def _reject(self, code: ErrorCode, message: str, **context: Any) -> AppError:
        error = AppError(
            message,
            code=code,
            severity=Severity.LOW,
            context={"component": "chat", "user_id": self.user_id, **context},
        )
        self.error_handler.handle(error)
        return error
