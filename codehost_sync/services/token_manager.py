"""Resolve a usable credential for an integration and refresh it when needed."""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar, Union
import asyncio
import logging

from codehost_sync.integrations.base import AuthenticationError, IntegrationError
from codehost_sync.models import Integration, IntegrationStatus, utcnow
from codehost_sync.services.github_app_service import GitHubAppService
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.oauth_service import OAuthService
from codehost_sync.utils.crypto import decrypt_token

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_REFRESH_THRESHOLD = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _is_unauthorized(error: Exception) -> bool:
    return isinstance(error, IntegrationError) and error.status_code == 401


class TokenManager:
    """Hands out the right token for an integration.

    App installations use installation tokens. Everything else, including
    legacy OAuth GitHub integrations, uses the stored OAuth access token,
    refreshed when it is within five minutes of expiry. A 401 from the
    wrapped call triggers one forced refresh and one retry.
    """

    def __init__(
        self,
        integration_service: IntegrationService,
        oauth_service: OAuthService,
        github_app_service: GitHubAppService,
    ):
        self.integration_service = integration_service
        self.oauth_service = oauth_service
        self.github_app_service = github_app_service

    async def _load(self, integration: Union[Integration, str]) -> Integration:
        if isinstance(integration, Integration):
            return integration
        return await self.integration_service.require_integration(integration)

    async def execute_with_token(
        self,
        integration: Union[Integration, str],
        fn: Callable[[str], Awaitable[T]],
    ) -> T:
        integration = await self._load(integration)

        if integration.uses_installation_token:
            return await self._execute_with_installation_token(integration, fn)

        await self.refresh_token_if_needed(integration)
        access_token = self.get_access_token(integration)

        try:
            return await fn(access_token)
        except IntegrationError as e:
            if not _is_unauthorized(e):
                raise
            logger.warning(
                f"Got 401 for integration {integration.id}, attempting token refresh"
            )
            await self.force_refresh_token(integration)
            return await fn(self.get_access_token(integration))

    async def _execute_with_installation_token(
        self,
        integration: Integration,
        fn: Callable[[str], Awaitable[T]],
    ) -> T:
        installation_id = integration.installation_id
        try:
            return await self.github_app_service.execute_with_installation_token(installation_id, fn)
        except IntegrationError as e:
            if not _is_unauthorized(e):
                raise
            logger.warning(
                f"Installation token for {installation_id} rejected, fetching a new one"
            )
            self.github_app_service.token_cache.evict(str(installation_id))
            return await self.github_app_service.execute_with_installation_token(installation_id, fn)

    def get_access_token(self, integration: Integration) -> str:
        encrypted = integration.auth_config.access_token
        if not encrypted:
            raise AuthenticationError(
                f"No access token found for integration {integration.id}. Please re-authenticate."
            )
        return decrypt_token(encrypted)

    async def refresh_token_if_needed(self, integration: Integration) -> None:
        expires_at = integration.auth_config.expires_at
        if not expires_at:
            logger.debug(f"Integration {integration.id} token has no expiry, skipping refresh check")
            return

        remaining = _as_utc(expires_at) - utcnow()
        if remaining < TOKEN_REFRESH_THRESHOLD:
            logger.info(
                f"Token for integration {integration.id} expires in "
                f"{int(remaining.total_seconds())}s, refreshing"
            )
            await self.force_refresh_token(integration)

    async def force_refresh_token(self, integration: Integration) -> None:
        encrypted_refresh = integration.auth_config.refresh_token
        if not encrypted_refresh:
            raise AuthenticationError(
                f"No refresh token found for integration {integration.id}. "
                f"Cannot refresh access token. Please re-authenticate."
            )
        refresh_token = decrypt_token(encrypted_refresh)

        try:
            tokens = await self.oauth_service.refresh_access_token(
                integration.integration_type, refresh_token
            )
        except IntegrationError as e:
            integration.health_status = IntegrationStatus.ERROR
            integration.last_error_at = utcnow()
            integration.last_error_message = f"Token refresh failed: {e}"
            await self.integration_service.save(integration)
            logger.error(f"Failed to refresh token for integration {integration.id}: {e}")
            raise AuthenticationError(
                f"Token refresh failed: {e}. Please re-authenticate the integration.",
                status_code=e.status_code,
                response_body=e.response_body,
            ) from e

        integration.last_error_at = None
        integration.last_error_message = None
        await self.integration_service.store_oauth_tokens(
            integration,
            tokens.access_token,
            # Keep the old refresh token when the provider doesn't rotate it
            refresh_token=tokens.refresh_token or refresh_token,
            expires_in=tokens.expires_in or int(DEFAULT_TOKEN_LIFETIME.total_seconds()),
        )
        logger.info(f"Successfully refreshed token for integration {integration.id}")

    async def refresh_expiring_tokens(self, window: timedelta = timedelta(hours=1)) -> int:
        """Refresh every active OAuth token that expires within ``window``."""
        integrations = await self.integration_service.list_integrations(
            {"is_active": True, "auth_config.type": "oauth"}, limit=0
        )
        now = utcnow()
        refreshed = 0

        for integration in integrations:
            expires_at = integration.auth_config.expires_at
            if not expires_at or integration.uses_installation_token:
                continue
            remaining = _as_utc(expires_at) - now
            if timedelta(0) < remaining < window:
                try:
                    await self.force_refresh_token(integration)
                    refreshed += 1
                except AuthenticationError as e:
                    # Already recorded on the integration
                    logger.error(f"Failed to refresh token for integration {integration.id}: {e}")

        logger.info(f"Refreshed {refreshed} expiring tokens")
        return refreshed

    async def refresh_tokens_periodically(
        self,
        interval: float,
        window: timedelta = timedelta(hours=1),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Run ``refresh_expiring_tokens`` every ``interval`` seconds until cancelled."""
        logger.info(f"Token refresh sweep started (every {interval}s)")
        while True:
            try:
                await self.refresh_expiring_tokens(window)
            except Exception as e:
                logger.error(f"Token refresh sweep failed: {e}")
            await sleep(interval)
