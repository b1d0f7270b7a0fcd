"""Application services."""

from biowell_service.services.batch_writer import BatchWriter
from biowell_service.services.chat import ChatSessionService, ChatState
from biowell_service.services.clients import ServiceClient
from biowell_service.services.metrics import HealthMetricsService

__all__ = [
    "BatchWriter",
    "ChatSessionService",
    "ChatState",
    "HealthMetricsService",
    "ServiceClient",
]
