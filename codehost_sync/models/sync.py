"""Sync job models."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import uuid

from codehost_sync.models.integration import utcnow


class SyncStatus(str, Enum):
    """Sync job status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncResource(str, Enum):
    """What a sync job covers."""
    INTEGRATION = "integration"  # every tracked repository
    REPOSITORY = "repository"  # issues, pull requests and commits of one repository


class SyncJob(BaseModel):
    """Sync job model."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="_id")
    integration_id: str
    resource: SyncResource = SyncResource.INTEGRATION
    resource_id: Optional[str] = None  # owner/name when resource is a repository

    # Job details
    status: SyncStatus = SyncStatus.PENDING

    # Timing
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Progress
    counts: Dict[str, int] = Field(default_factory=dict)
    processed_records: int = 0
    error_records: int = 0

    # Error handling
    error_message: Optional[str] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
