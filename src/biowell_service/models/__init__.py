"""Database models."""

from biowell_service.models.base import Base
from biowell_service.models.chat import ChatMessageRecord, ChatSessionRecord
from biowell_service.models.health_metric import HealthMetric
from biowell_service.models.profile import UserProfile

__all__ = [
    "Base",
    "ChatMessageRecord",
    "ChatSessionRecord",
    "HealthMetric",
    "UserProfile",
]
