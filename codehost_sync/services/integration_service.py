"""Integration service for managing integrations."""

from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
import logging

from codehost_sync.core.database import Database, COLLECTIONS
from codehost_sync.integrations.base import IntegrationNotFoundError
from codehost_sync.models import Integration, IntegrationStatus, IntegrationType, utcnow
from codehost_sync.utils.crypto import encrypt_token

logger = logging.getLogger(__name__)


class IntegrationService:
    """Service for managing integrations."""

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["integrations"])

    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        """Get integration by ID."""
        doc = await self.collection.find_one({"_id": integration_id})
        if doc:
            return Integration.model_validate(doc)
        return None

    async def require_integration(self, integration_id: str) -> Integration:
        integration = await self.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(
                f"Integration {integration_id} not found", status_code=404
            )
        return integration

    async def find_by_installation_id(
        self,
        installation_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[Integration]:
        query: Dict[str, Any] = {
            "installation_id": str(installation_id),
            "integration_type": IntegrationType.GITHUB.value,
        }
        if organization_id:
            query["organization_id"] = organization_id
        doc = await self.collection.find_one(query)
        if doc:
            return Integration.model_validate(doc)
        return None

    async def find_by_repository(self, repository: str) -> List[Integration]:
        """Active GitHub integrations that track ``owner/name``."""
        cursor = self.collection.find(
            {
                "integration_type": IntegrationType.GITHUB.value,
                "is_active": True,
                "config.repositories": repository,
            }
        )
        return [Integration.model_validate(doc) async for doc in cursor]

    async def list_integrations(
        self,
        filters: Dict[str, Any],
        skip: int = 0,
        limit: int = 10,
    ) -> List[Integration]:
        """List integrations with filters."""
        cursor = self.collection.find(filters).skip(skip).limit(limit)
        return [Integration.model_validate(doc) async for doc in cursor]

    async def save(self, integration: Integration) -> Integration:
        """Insert or fully replace an integration document."""
        integration.updated_at = utcnow()
        await self.collection.replace_one(
            {"_id": integration.id}, integration.to_document(), upsert=True
        )
        return integration

    async def update_integration(
        self,
        integration_id: str,
        update_data: Dict[str, Any],
    ) -> None:
        """Apply a partial ``$set`` update."""
        update_data["updated_at"] = utcnow()
        await self.collection.update_one({"_id": integration_id}, {"$set": update_data})

    async def mark_synced(self, integration_id: str, synced_at: Optional[datetime] = None) -> None:
        await self.update_integration(
            integration_id,
            {
                "last_sync_at": synced_at or utcnow(),
                "health_status": IntegrationStatus.HEALTHY.value,
            },
        )

    async def record_error(self, integration_id: str, message: str) -> None:
        """Remember the latest failure and flag the integration unhealthy."""
        logger.error(f"Integration {integration_id} error: {message}")
        await self.update_integration(
            integration_id,
            {
                "health_status": IntegrationStatus.ERROR.value,
                "last_error_at": utcnow(),
                "last_error_message": message,
            },
        )

    async def store_oauth_tokens(
        self,
        integration: Integration,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
        scopes: Optional[List[str]] = None,
    ) -> Integration:
        """Encrypt and persist tokens from an OAuth exchange or refresh."""
        integration.auth_config.access_token = encrypt_token(access_token)
        if refresh_token:
            integration.auth_config.refresh_token = encrypt_token(refresh_token)
        integration.auth_config.expires_at = (
            utcnow() + timedelta(seconds=expires_in) if expires_in else None
        )
        if scopes is not None:
            integration.auth_config.scopes = scopes
        integration.health_status = IntegrationStatus.HEALTHY
        await self.save(integration)
        logger.info(f"Stored OAuth tokens for integration {integration.id}")
        return integration

    async def link_repository_to_project(
        self,
        integration_id: str,
        repository: str,
        project_key: str,
    ) -> Integration:
        """Map a tracked repository to an internal project key.

        Only repositories with a mapping may resolve bare ``#123`` references
        in commit messages.
        """
        integration = await self.require_integration(integration_id)
        if repository not in integration.config.repositories:
            integration.config.repositories.append(repository)
        integration.config.repository_projects[repository] = project_key.upper()
        await self.save(integration)
        logger.info(
            f"Linked repository {repository} to project {project_key.upper()} "
            f"on integration {integration_id}"
        )
        return integration

    async def unlink_repository(self, integration_id: str, repository: str) -> Integration:
        integration = await self.require_integration(integration_id)
        integration.config.repository_projects.pop(repository, None)
        await self.save(integration)
        logger.info(f"Unlinked repository {repository} on integration {integration_id}")
        return integration
