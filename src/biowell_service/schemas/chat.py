"""Pydantic schemas for chat sessions and messages."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ChatRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One turn in a conversation."""

    id: str = Field(description="Locally generated message ID")
    role: ChatRole
    text: str
    timestamp: datetime = Field(description="Send time, replaced by the server time on success")
    detail: str | None = Field(default=None, description="Extended answer text")


class ChatSession(BaseModel):
    """A conversation thread with its summary."""

    id: str
    user_id: str
    title: str = "New Chat"
    last_message: str | None = None
    message_count: int = 0
    created_at: datetime
    updated_at: datetime


class ChatReply(BaseModel):
    """Completion service reply."""

    response: str
    timestamp: datetime
    confidence: float | None = None
    session_id: str | None = None
    detail: str | None = None


class SendMessageRequest(BaseModel):
    """Body of a send-message request."""

    text: str = Field(min_length=1, max_length=4000)


class CreateSessionRequest(BaseModel):
    """Body of a create-session request."""

    title: str | None = Field(default=None, max_length=255)
