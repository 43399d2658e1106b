"""Normalized remote entities and their search projection."""

from datetime import datetime
from typing import Annotated, Optional, Dict, Any, List, Literal, Union
from pydantic import BaseModel, Field
from enum import Enum

from codehost_sync.models.integration import utcnow


class ExternalType(str, Enum):
    """Kinds of records stored in the external data collection."""
    REPOSITORY = "repository"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    COMMIT = "commit"

    # Link records written by the issue link service
    PR_ISSUE_LINK = "pr_issue_link"
    COMMIT_ISSUE_LINK = "commit_issue_link"
    MAGIC_WORD_CLOSE = "magic_word_close"
    PR_MERGED = "pr_merged"


class RepositoryMetadata(BaseModel):
    kind: Literal["repository"] = "repository"
    owner: Optional[str] = None
    private: bool = False
    default_branch: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0


class IssueMetadata(BaseModel):
    kind: Literal["issue"] = "issue"
    number: int
    state: str
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)
    milestone: Optional[str] = None
    repository: Optional[str] = None


class PullRequestMetadata(BaseModel):
    kind: Literal["pull_request"] = "pull_request"
    number: int
    state: str
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)
    head_branch: str
    base_branch: str
    mergeable: Optional[bool] = None
    merged: bool = False
    repository: Optional[str] = None


class CommitMetadata(BaseModel):
    kind: Literal["commit"] = "commit"
    sha: str
    short_sha: str
    author: Optional[str] = None
    committer: Optional[str] = None
    repository: Optional[str] = None
    branch: Optional[str] = None


EntityMetadata = Annotated[
    Union[RepositoryMetadata, IssueMetadata, PullRequestMetadata, CommitMetadata],
    Field(discriminator="kind"),
]


class MappedData(BaseModel):
    """Canonical shape every remote entity is normalized into."""
    title: str
    content: str = ""
    author: str = "unknown"
    source: str = "github"
    url: Optional[str] = None
    metadata: EntityMetadata

    @property
    def search_text(self) -> str:
        return f"{self.title} {self.content}".lower()


class ExternalData(BaseModel):
    """One stored remote entity or link record.

    Unique per (integration_id, external_id, external_type).
    """
    integration_id: str
    external_id: str
    external_type: ExternalType
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    mapped_data: Optional[MappedData] = None
    search_text: Optional[str] = None
    last_sync_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> Dict[str, str]:
        return {
            "integration_id": self.integration_id,
            "external_id": self.external_id,
            "external_type": self.external_type.value,
        }


class SearchIndexEntry(BaseModel):
    """Denormalized full-text projection of an ExternalData record."""
    integration_id: str
    external_id: str
    content_type: str
    title: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    search_vector: str
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_mapped(
        cls,
        integration_id: str,
        external_id: str,
        content_type: str,
        mapped: MappedData,
    ) -> "SearchIndexEntry":
        typed = mapped.metadata.model_dump()
        metadata = {
            **typed,
            "source": mapped.source,
            "url": mapped.url,
            "author": mapped.author,
            "timestamp": utcnow(),
            "tags": [],
            "priority": 1,
        }
        if typed.get("author"):
            # Commit metadata carries the account login under the same key
            metadata["author_login"] = typed["author"]
        return cls(
            integration_id=integration_id,
            external_id=external_id,
            content_type=content_type,
            title=mapped.title,
            content=mapped.content,
            metadata=metadata,
            search_vector=mapped.search_text,
        )
