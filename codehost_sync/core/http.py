"""Shared outbound HTTP client."""

from typing import Optional
import httpx
import logging

from codehost_sync.core.config import get_settings

logger = logging.getLogger(__name__)


class HTTPClientManager:
    """One ``httpx.AsyncClient`` for every remote call the service makes."""

    client: Optional[httpx.AsyncClient] = None

    def start(self) -> httpx.AsyncClient:
        if self.client is None:
            settings = get_settings()
            self.client = httpx.AsyncClient(timeout=settings.http_timeout)
            logger.info(f"HTTP client started (timeout {settings.http_timeout}s)")
        return self.client

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("HTTP client closed")

    def get_client(self) -> httpx.AsyncClient:
        """The shared client, created on first use outside the app lifespan."""
        return self.start()


# Global HTTP client instance
http_client_manager = HTTPClientManager()
