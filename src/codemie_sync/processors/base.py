"""Base classes for session processors.

A processor turns one category of agent session data (metrics,
conversations, ...) into records pushed to the analytics API. Each processor
owns its own ``session.sync.<name>`` slice and nothing else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from codemie_sync.api.client import AnalyticsApiClient
from codemie_sync.sessions.models import Session


@dataclass
class ProcessingContext:
    """Connection and mode settings shared by all processors in a pass.

    Attributes:
        api_base_url: Base URL of the analytics API
        client_type: Client type identifier sent with every request
        version: Client version
        cookies: Cookie header value (SSO)
        api_key: API key (local development override)
        dry_run: Log payloads instead of sending them
        timeout: Request timeout in seconds
        batch_size: Maximum records per request
    """

    api_base_url: str
    client_type: str
    version: str = "0.0.0"
    cookies: str | None = None
    api_key: str | None = None
    dry_run: bool = False
    timeout: float = 30.0
    batch_size: int = 50


@dataclass
class ProcessingResult:
    success: bool
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "metadata": self.metadata}


def create_api_client(context: ProcessingContext) -> AnalyticsApiClient:
    """Build the analytics client described by a processing context."""
    return AnalyticsApiClient(
        base_url=context.api_base_url,
        client_type=context.client_type,
        version=context.version,
        cookies=context.cookies,
        api_key=context.api_key,
        timeout=context.timeout,
    )


class BaseProcessor(ABC):
    """Abstract base class for session processors."""

    #: Name of the processor, also the key of its sync state slice
    name: str = ""
    #: Lower runs first
    priority: int = 100

    def should_process(self, session: Session) -> bool:
        """Whether this processor applies to the session."""
        return True

    @abstractmethod
    async def process(self, session: Session, context: ProcessingContext) -> ProcessingResult:
        """Run one processing step for the session.

        Implementations mutate only their own sync slice on ``session``;
        the caller persists the session afterwards.
        """
        ...
