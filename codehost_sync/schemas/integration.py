"""Integration API schemas."""

from datetime import datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, Field

from codehost_sync.models import (
    Integration,
    IntegrationType,
    IntegrationStatus,
    IntegrationConfig,
    SyncJob,
    SyncResource,
    SyncStatus,
)


class IntegrationResponse(BaseModel):
    """Integration response schema. Credentials are never included."""
    id: str
    organization_id: str
    integration_type: IntegrationType
    name: str
    is_active: bool
    health_status: IntegrationStatus
    installation_id: Optional[str] = None
    is_legacy_oauth: bool = False
    account_login: Optional[str] = None
    config: IntegrationConfig
    created_at: datetime
    updated_at: datetime
    last_sync_at: Optional[datetime] = None
    last_error_message: Optional[str] = None

    @classmethod
    def from_integration(cls, integration: Integration) -> "IntegrationResponse":
        return cls.model_validate(integration.model_dump(exclude={"auth_config"}))


class IntegrationListResponse(BaseModel):
    """List of integrations response."""
    items: List[IntegrationResponse]
    skip: int
    limit: int


class OAuthInitResponse(BaseModel):
    """OAuth initialization response."""
    authorization_url: str
    state: str


class InstallUrlResponse(BaseModel):
    """GitHub App installation link with its signed state."""
    install_url: str
    state: str


class SyncRequest(BaseModel):
    """Sync request schema."""
    resource: SyncResource = SyncResource.INTEGRATION
    resource_id: Optional[str] = Field(None, description="owner/name for repository syncs")


class SyncResponse(BaseModel):
    """Sync response schema."""
    sync_job_id: str
    status: SyncStatus
    counts: Dict[str, int]
    created_at: datetime
    completed_at: Optional[datetime] = None
    message: str

    @classmethod
    def from_job(cls, job: SyncJob) -> "SyncResponse":
        if job.status == SyncStatus.COMPLETED:
            message = f"Sync completed: {job.processed_records} records"
        else:
            message = job.error_message or "Sync did not complete"
        return cls(
            sync_job_id=job.id,
            status=job.status,
            counts=job.counts,
            created_at=job.created_at,
            completed_at=job.completed_at,
            message=message,
        )


class RepositoryLinkRequest(BaseModel):
    """Map a repository to the project whose ``#123`` references it may close."""
    repository: str = Field(..., pattern=r"^[\w.-]+/[\w.-]+$")
    project_key: str = Field(..., pattern=r"^[A-Za-z]+$")


class RepositoryUnlinkRequest(BaseModel):
    repository: str
