"""CodeMie analytics API client.

Thin async wrapper around httpx for the two endpoints the sync engine
talks to. Every non-2xx response or transport error is raised as
SyncApiError; retrying is left to the next sync pass.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from codemie_sync import __version__
from codemie_sync.errors import SyncApiError

logger = logging.getLogger(__name__)

METRICS_ENDPOINT = "/v1/metrics"
CONVERSATION_HISTORY_ENDPOINT = "/v1/conversations/{conversation_id}/history"


class AnalyticsApiClient:
    """Client for the CodeMie analytics endpoints.

    Authentication is either a session cookie header (SSO) or an API key
    (local development), plus the client type/version identifiers.

    Example usage:
        ```python
        client = AnalyticsApiClient(
            base_url="https://codemie.example.com/code-assistant-api",
            cookies="session=abc",
            client_type="codemie-cli",
            version="0.3.0",
        )
        await client.post_metrics({"metrics": [...]})
        ```
    """

    def __init__(
        self,
        base_url: str,
        client_type: str,
        version: str = "0.0.0",
        cookies: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the analytics API
            client_type: Client type identifier (e.g. 'codemie-cli')
            version: Client version
            cookies: Pre-built Cookie header value
            api_key: API key (used instead of cookies in local dev mode)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.client_type = client_type
        self.version = version
        self.cookies = cookies
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-CodeMie-Client": self.client_type,
            "X-CodeMie-CLI": f"{self.client_type}/{self.version}",
            "User-Agent": f"codemie-sync/{__version__}",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
            headers["user-id"] = "dev-user"
        elif self.cookies:
            headers["Cookie"] = self.cookies
        return headers

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            try:
                response = await client.post(url, headers=self._get_headers(), json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error(f"Analytics API error: {status} for {endpoint}")
                raise SyncApiError(f"Analytics API error: {status}", status_code=status) from e
            except httpx.RequestError as e:
                logger.error(f"Analytics API request failed: {e}")
                raise SyncApiError(f"Analytics API request failed: {e}") from e

        if not response.content:
            return {}
        try:
            result = response.json()
        except ValueError:
            return {}
        return result if isinstance(result, dict) else {"data": result}

    async def post_metrics(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a batch of session metrics.

        Raises:
            SyncApiError: If the request fails
        """
        return await self._post(METRICS_ENDPOINT, payload)

    async def post_conversation_history(
        self, conversation_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Append messages to a conversation's history.

        Raises:
            SyncApiError: If the request fails
        """
        return await self._post(
            CONVERSATION_HISTORY_ENDPOINT.format(conversation_id=conversation_id), payload
        )
