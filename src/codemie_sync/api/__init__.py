"""Analytics API client."""

from codemie_sync.api.client import AnalyticsApiClient

__all__ = ["AnalyticsApiClient"]
