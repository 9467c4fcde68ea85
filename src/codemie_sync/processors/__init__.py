"""Session processors run by the syncer on every sync pass."""

from codemie_sync.processors.base import (
    BaseProcessor,
    ProcessingContext,
    ProcessingResult,
    create_api_client,
)
from codemie_sync.processors.conversations import ConversationsProcessor
from codemie_sync.processors.metrics import MetricsProcessor

__all__ = [
    "BaseProcessor",
    "ConversationsProcessor",
    "MetricsProcessor",
    "ProcessingContext",
    "ProcessingResult",
    "create_api_client",
    "default_processors",
]


def default_processors() -> list[BaseProcessor]:
    """Processors registered for every session, in priority order."""
    return sorted([MetricsProcessor(), ConversationsProcessor()], key=lambda p: p.priority)
