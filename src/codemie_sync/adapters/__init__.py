"""
Metrics adapters.

Exports the adapter protocol and the registry of adapters keyed by agent
name. Supporting a new agent means registering a new adapter class here
(or via register_adapter at runtime).
"""

from codemie_sync.adapters.base import (
    AgentSessionInfo,
    ConversationAdapter,
    ConversationMessage,
    IncrementalResult,
    MetricsAdapter,
)
from codemie_sync.adapters.claude import ClaudeMetricsAdapter

__all__ = [
    "ADAPTER_REGISTRY",
    "AgentSessionInfo",
    "ClaudeMetricsAdapter",
    "ConversationAdapter",
    "ConversationMessage",
    "IncrementalResult",
    "MetricsAdapter",
    "get_adapter",
    "register_adapter",
]

ADAPTER_REGISTRY: dict[str, type[MetricsAdapter]] = {
    "claude": ClaudeMetricsAdapter,
}


def register_adapter(agent_name: str, adapter_cls: type[MetricsAdapter]) -> None:
    """Register (or replace) the adapter used for an agent."""
    ADAPTER_REGISTRY[agent_name] = adapter_cls


def get_adapter(agent_name: str) -> MetricsAdapter | None:
    """
    Get a metrics adapter instance for the given agent.

    Args:
        agent_name: Agent name (e.g., 'claude')

    Returns:
        Adapter instance, or None if no adapter is registered
    """
    adapter_cls = ADAPTER_REGISTRY.get(agent_name)
    if adapter_cls is None:
        return None
    return adapter_cls()
