"""Integration models."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationType(str, Enum):
    """Types of integrations."""
    GITHUB = "github"
    SLACK = "slack"
    JIRA = "jira"
    GOOGLE_WORKSPACE = "google_workspace"
    MICROSOFT_TEAMS = "microsoft_teams"
    TRELLO = "trello"


class IntegrationStatus(str, Enum):
    """Integration health status."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class AuthConfig(BaseModel):
    """Stored credential material.

    ``access_token`` and ``refresh_token`` are Fernet-encrypted at rest; see
    ``codehost_sync.utils.crypto``.
    """
    type: str = "oauth"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)


class SyncSettings(BaseModel):
    """Per-integration sync preferences."""
    enabled: bool = True
    frequency: str = "realtime"
    batch_size: int = 10  # repositories fetched concurrently


class IntegrationConfig(BaseModel):
    """Integration specific configuration."""
    repositories: List[str] = Field(default_factory=list)
    # owner/name -> internal project key, used to resolve "#123" references
    repository_projects: Dict[str, str] = Field(default_factory=dict)
    sync_settings: SyncSettings = Field(default_factory=SyncSettings)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class Integration(BaseModel):
    """Integration model."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="_id")
    organization_id: str
    integration_type: IntegrationType
    name: str
    is_active: bool = True
    health_status: IntegrationStatus = IntegrationStatus.HEALTHY

    # GitHub App installations
    installation_id: Optional[str] = None
    is_legacy_oauth: bool = False
    account_type: Optional[str] = None
    account_login: Optional[str] = None

    # Authentication
    auth_config: AuthConfig = Field(default_factory=AuthConfig)

    # Configuration
    config: IntegrationConfig = Field(default_factory=IntegrationConfig)

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_sync_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error_message: Optional[str] = None

    @property
    def uses_installation_token(self) -> bool:
        """True when API calls authenticate as a GitHub App installation."""
        return bool(self.installation_id) and not self.is_legacy_oauth

    def project_key_for(self, repository: str) -> Optional[str]:
        """Project key registered for a repository, if any."""
        return self.config.repository_projects.get(repository)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
