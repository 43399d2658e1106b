"""Integration management API endpoints."""

from fastapi import APIRouter, HTTPException, status, Depends, Query
from typing import Optional, Dict, Any
import logging

from codehost_sync.integrations.base import (
    AuthenticationError,
    ConfigurationError,
    IntegrationError,
    IntegrationNotFoundError,
    OAuthNotSupportedError,
)
from codehost_sync.core.config import INTEGRATION_CONFIGS
from codehost_sync.models import AuthConfig, Integration, IntegrationType, SyncJob
from codehost_sync.schemas.integration import (
    IntegrationResponse,
    IntegrationListResponse,
    InstallUrlResponse,
    OAuthInitResponse,
    RepositoryLinkRequest,
    RepositoryUnlinkRequest,
    SyncRequest,
    SyncResponse,
)
from codehost_sync.services.github_app_service import GitHubAppService
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.issue_link_service import IssueLinkService
from codehost_sync.services.oauth_service import OAuthService
from codehost_sync.services.sync_service import GitHubSyncService
from codehost_sync.api.dependencies import (
    get_current_user,
    get_github_app_service,
    get_integration_service,
    get_issue_link_service,
    get_oauth_service,
    get_sync_service,
)

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_owned_integration(
    integration_id: str,
    current_user: Dict[str, Any],
    service: IntegrationService,
) -> Integration:
    integration = await service.get_integration(integration_id)

    if not integration:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Integration not found"
        )

    # Check ownership
    if integration.organization_id != current_user.get("organization_id"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this integration"
        )

    return integration


@router.get("/", response_model=IntegrationListResponse)
async def list_integrations(
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    integration_type: Optional[IntegrationType] = None,
    current_user=Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    """List the organization's integrations."""
    filters: Dict[str, Any] = {"organization_id": current_user.get("organization_id")}
    if integration_type:
        filters["integration_type"] = integration_type.value

    integrations = await service.list_integrations(filters, skip, limit)

    return IntegrationListResponse(
        items=[IntegrationResponse.from_integration(i) for i in integrations],
        skip=skip,
        limit=limit,
    )


@router.get("/oauth/{integration_type}/authorize", response_model=OAuthInitResponse)
async def init_oauth(
    integration_type: str,
    current_user=Depends(get_current_user),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    """Build the provider's authorization URL and the state to check on callback."""
    organization_id = current_user.get("organization_id")
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User has no organization"
        )

    state = oauth_service.create_state(integration_type, organization_id, str(current_user["id"]))
    try:
        authorization_url = oauth_service.build_authorize_url(integration_type, state)
    except (OAuthNotSupportedError, ConfigurationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    logger.info(f"OAuth flow started for {integration_type} by user {current_user.get('id')}")
    return OAuthInitResponse(authorization_url=authorization_url, state=state)


@router.get("/oauth/{slug}/callback", response_model=IntegrationResponse)
async def oauth_callback(
    slug: str,
    code: str = Query(...),
    state: str = Query(...),
    oauth_service: OAuthService = Depends(get_oauth_service),
    service: IntegrationService = Depends(get_integration_service),
):
    """Handle the provider's redirect: verify state, exchange the code, create the integration."""
    try:
        integration_type = oauth_service.kind_for_slug(slug)
        oauth_state = oauth_service.decode_state(state, integration_type)
        tokens = await oauth_service.exchange_code_for_tokens(integration_type, code)
    except (OAuthNotSupportedError, ConfigurationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except AuthenticationError as e:
        logger.error(f"OAuth callback failed for {slug}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"OAuth authentication failed: {e.message}"
        )

    integration = Integration(
        organization_id=oauth_state["organization_id"],
        integration_type=IntegrationType(integration_type),
        name=INTEGRATION_CONFIGS[integration_type]["name"],
        # GitHub connected through OAuth instead of the App
        is_legacy_oauth=integration_type == IntegrationType.GITHUB.value,
        auth_config=AuthConfig(type="oauth", token_type=tokens.token_type or "Bearer"),
    )
    scopes = tokens.scope.replace(",", " ").split() if tokens.scope else None
    integration = await service.store_oauth_tokens(
        integration,
        tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        scopes=scopes,
    )

    logger.info(
        f"OAuth connection established: {integration_type} integration {integration.id} "
        f"for organization {integration.organization_id}"
    )
    return IntegrationResponse.from_integration(integration)


@router.get("/github-app/install-url", response_model=InstallUrlResponse)
async def get_install_url(
    current_user=Depends(get_current_user),
    app_service: GitHubAppService = Depends(get_github_app_service),
):
    """Link to install the GitHub App, carrying the caller's organization."""
    organization_id = current_user.get("organization_id")
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User has no organization"
        )

    state = app_service.create_install_state(organization_id, str(current_user["id"]))
    return InstallUrlResponse(install_url=app_service.get_installation_url(state), state=state)


@router.get("/github-app/callback", response_model=IntegrationResponse)
async def github_app_callback(
    installation_id: str,
    state: str,
    app_service: GitHubAppService = Depends(get_github_app_service),
):
    """Create the integration after GitHub redirects back from an installation."""
    try:
        install_state = app_service.decode_install_state(state)
        integration = await app_service.complete_installation(
            installation_id, install_state["organization_id"]
        )
    except AuthenticationError as e:
        raise HTTPException(
            status_code=e.status_code or status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except ConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    if integration is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Installation could not be completed"
        )

    return IntegrationResponse.from_integration(integration)


@router.get("/issues/{issue_id}/links")
async def get_issue_links(
    issue_id: str,
    current_user=Depends(get_current_user),
    link_service: IssueLinkService = Depends(get_issue_link_service),
):
    """Pull requests and commits linked to an issue."""
    links = await link_service.get_links_for_issue(issue_id)
    return {
        kind: [record.raw_data for record in records]
        for kind, records in links.items()
    }


@router.get("/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: str,
    current_user=Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    """Get integration details."""
    integration = await _get_owned_integration(integration_id, current_user, service)
    return IntegrationResponse.from_integration(integration)


# Sync operations
@router.post("/{integration_id}/sync", response_model=SyncResponse)
async def trigger_sync(
    integration_id: str,
    sync_request: SyncRequest,
    current_user=Depends(get_current_user),
    integration_service: IntegrationService = Depends(get_integration_service),
    sync_service: GitHubSyncService = Depends(get_sync_service),
):
    """Run a sync for an integration and report the job outcome."""
    integration = await _get_owned_integration(integration_id, current_user, integration_service)

    if not integration.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Integration is not active"
        )

    job = SyncJob(
        integration_id=integration.id,
        resource=sync_request.resource,
        resource_id=sync_request.resource_id,
    )

    try:
        await sync_service.run_sync_job(job)
    except IntegrationNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
    except IntegrationError:
        # The failed job is persisted and reported below
        pass

    return SyncResponse.from_job(job)


@router.post("/{integration_id}/repositories/link", response_model=IntegrationResponse)
async def link_repository(
    integration_id: str,
    link_request: RepositoryLinkRequest,
    current_user=Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    """Map a repository to a project so its commits may close ``#123`` issues."""
    await _get_owned_integration(integration_id, current_user, service)
    integration = await service.link_repository_to_project(
        integration_id, link_request.repository, link_request.project_key
    )
    return IntegrationResponse.from_integration(integration)


@router.post("/{integration_id}/repositories/unlink", response_model=IntegrationResponse)
async def unlink_repository(
    integration_id: str,
    unlink_request: RepositoryUnlinkRequest,
    current_user=Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    """Remove a repository's project mapping."""
    await _get_owned_integration(integration_id, current_user, service)
    integration = await service.unlink_repository(integration_id, unlink_request.repository)
    return IntegrationResponse.from_integration(integration)
