"""Base client interface for remote services."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from ..services.retry import Sleep

logger = logging.getLogger(__name__)


class BaseClient(ABC):
    """
    Base class for remote service clients.

    Owns one ``httpx.AsyncClient`` for the lifetime of a run. Use as an
    async context manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        service: str,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize the client.

        Args:
            service: Name of the remote service, used in logs
            api_key: Credential sent with every request
            base_url: Base URL for the API
            timeout: Per-request timeout in seconds
            http_client: Pre-built HTTP client (tests inject a mock transport)
            sleep: Awaitable sleep used for backoff
        """
        self.service = service
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._sleep = sleep or asyncio.sleep
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @abstractmethod
    def _auth_headers(self) -> Dict[str, str]:
        """Headers that authenticate a request."""
        pass

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        headers.update(self._auth_headers())
        return headers

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
