"""Chat session endpoints.

Each user's sessions are owned by one ``ChatSessionService`` held in the
service container, so a message sent while another is pending for the same
session is rejected with 409.
"""

from typing import Any

from litestar import Router, get, post
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from biowell_service.schemas.chat import CreateSessionRequest, SendMessageRequest
from biowell_service.services.chat import ChatSessionService
from biowell_service.services.container import ServiceContainer


def _session_view(chat: ChatSessionService) -> dict[str, Any]:
    current = chat.current_session
    return {
        "sessions": [s.model_dump(mode="json") for s in chat.sessions],
        "current_session_id": current.id if current else None,
    }


async def _select(chat: ChatSessionService, session_id: str) -> None:
    if chat.current_session is None or chat.current_session.id != session_id:
        await chat.select_session(session_id)


@get("/users/{user_id:str}/chat/sessions", status_code=HTTP_200_OK)
async def list_sessions(user_id: str, services: ServiceContainer) -> dict[str, Any]:
    """List sessions, creating the first one for a new user."""
    chat = services.chat_for(user_id)
    await chat.load_sessions()
    return _session_view(chat)


@post("/users/{user_id:str}/chat/sessions", status_code=HTTP_201_CREATED)
async def create_session(
    user_id: str,
    data: CreateSessionRequest,
    services: ServiceContainer,
) -> dict[str, Any]:
    """Start a new session and make it current."""
    session = await services.chat_for(user_id).create_session(data.title)
    return session.model_dump(mode="json")


@get("/users/{user_id:str}/chat/sessions/{session_id:str}/messages", status_code=HTTP_200_OK)
async def list_messages(
    user_id: str,
    session_id: str,
    services: ServiceContainer,
) -> dict[str, Any]:
    """Messages of a session, oldest first."""
    chat = services.chat_for(user_id)
    await chat.select_session(session_id)
    return {
        "session_id": session_id,
        "state": chat.state(session_id).value,
        "messages": [m.model_dump(mode="json") for m in chat.messages_for(session_id)],
    }


@post("/users/{user_id:str}/chat/sessions/{session_id:str}/messages", status_code=HTTP_200_OK)
async def send_message(
    user_id: str,
    session_id: str,
    data: SendMessageRequest,
    services: ServiceContainer,
) -> dict[str, Any]:
    """Send a message and return the assistant's reply.

    Returns:
        Reply, updated session summary and the session's messages
    """
    chat = services.chat_for(user_id)
    await _select(chat, session_id)
    reply = await chat.send_message(data.text)
    session = next((s for s in chat.sessions if s.id == session_id), None)
    return {
        "reply": reply.model_dump(mode="json"),
        "session": session.model_dump(mode="json") if session else None,
        "messages": [m.model_dump(mode="json") for m in chat.messages_for(session_id)],
    }


chat_router = Router(
    path="/",
    route_handlers=[list_sessions, create_session, list_messages, send_message],
)
