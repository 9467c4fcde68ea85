"""
Metric delta model and aggregation helpers.
"""

from codemie_sync.metrics.models import (
    FileOperation,
    MetricDelta,
    SyncStats,
    TokenUsage,
    ToolStatus,
)

__all__ = ["FileOperation", "MetricDelta", "SyncStats", "TokenUsage", "ToolStatus"]
