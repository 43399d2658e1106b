"""API dependencies."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict, Any
import httpx
import logging

from codehost_sync.core.config import get_settings
from codehost_sync.core.database import database
from codehost_sync.core.http import http_client_manager
from codehost_sync.integrations.github import GitHubClient
from codehost_sync.services.event_bus import EventBus
from codehost_sync.services.external_data_service import ExternalDataService
from codehost_sync.services.github_app_service import GitHubAppService, InstallationTokenCache
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.issue_link_service import IssueLinkService
from codehost_sync.services.issue_store import MongoIssueStore
from codehost_sync.services.oauth_service import OAuthService
from codehost_sync.services.rate_limit_service import RateLimitService
from codehost_sync.services.sync_service import GitHubSyncService
from codehost_sync.services.token_manager import TokenManager
from codehost_sync.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)
settings = get_settings()

# Security
security = HTTPBearer()

# Process-wide state shared by every request
token_cache = InstallationTokenCache()
event_bus = EventBus()


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, Any]:
    """Get current user from auth service."""
    token = credentials.credentials

    try:
        # Verify token with auth service
        response = await http_client_manager.get_client().get(
            f"{settings.auth_service_url}/api/v1/users/me",
            headers={"Authorization": f"Bearer {token}"},
        )
    except httpx.RequestError as e:
        logger.error(f"Auth service request failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable"
        )

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return response.json()


# Service dependencies
def get_rate_limit_service() -> RateLimitService:
    return RateLimitService()


def get_integration_service() -> IntegrationService:
    """Get integration service instance."""
    return IntegrationService(database)


def get_external_data_service() -> ExternalDataService:
    return ExternalDataService(database)


def get_oauth_service(
    rate_limit_service: RateLimitService = Depends(get_rate_limit_service),
) -> OAuthService:
    return OAuthService(settings, http_client_manager.get_client(), rate_limit_service)


def get_github_app_service(
    integration_service: IntegrationService = Depends(get_integration_service),
    rate_limit_service: RateLimitService = Depends(get_rate_limit_service),
) -> GitHubAppService:
    return GitHubAppService(
        integration_service,
        settings=settings,
        http_client=http_client_manager.get_client(),
        rate_limit_service=rate_limit_service,
        token_cache=token_cache,
    )


def get_token_manager(
    integration_service: IntegrationService = Depends(get_integration_service),
    oauth_service: OAuthService = Depends(get_oauth_service),
    github_app_service: GitHubAppService = Depends(get_github_app_service),
) -> TokenManager:
    return TokenManager(integration_service, oauth_service, github_app_service)


def create_token_manager() -> TokenManager:
    """TokenManager for work outside a request, such as the refresh sweep."""
    rate_limit_service = get_rate_limit_service()
    integration_service = get_integration_service()
    return get_token_manager(
        integration_service,
        get_oauth_service(rate_limit_service),
        get_github_app_service(integration_service, rate_limit_service),
    )


def get_sync_service(
    integration_service: IntegrationService = Depends(get_integration_service),
    external_data_service: ExternalDataService = Depends(get_external_data_service),
    token_manager: TokenManager = Depends(get_token_manager),
    rate_limit_service: RateLimitService = Depends(get_rate_limit_service),
) -> GitHubSyncService:
    """Get sync service instance."""
    client = GitHubClient(settings, http_client_manager.get_client(), rate_limit_service)
    return GitHubSyncService(
        database, integration_service, external_data_service, token_manager, client
    )


def get_issue_link_service(
    external_data_service: ExternalDataService = Depends(get_external_data_service),
) -> IssueLinkService:
    return IssueLinkService(MongoIssueStore(database), external_data_service, event_bus)


def get_webhook_service(
    github_app_service: GitHubAppService = Depends(get_github_app_service),
    integration_service: IntegrationService = Depends(get_integration_service),
    sync_service: GitHubSyncService = Depends(get_sync_service),
    issue_link_service: IssueLinkService = Depends(get_issue_link_service),
) -> WebhookService:
    """Get webhook service instance."""
    return WebhookService(github_app_service, integration_service, sync_service, issue_link_service)
