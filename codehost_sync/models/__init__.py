"""Database models for the codehost sync service."""

from .integration import (
    Integration,
    IntegrationConfig,
    IntegrationType,
    IntegrationStatus,
    AuthConfig,
    utcnow,
)
from .external_data import (
    ExternalType,
    ExternalData,
    MappedData,
    SearchIndexEntry,
    RepositoryMetadata,
    IssueMetadata,
    PullRequestMetadata,
    CommitMetadata,
)
from .github import GitHubRepository, GitHubIssue, GitHubPullRequest, GitHubCommit
from .issue import Issue, IssueProject, IssueStatus, MagicWordMatch, IssueClosedByCommitEvent
from .sync import SyncJob, SyncStatus, SyncResource

__all__ = [
    "Integration",
    "IntegrationConfig",
    "IntegrationType",
    "IntegrationStatus",
    "AuthConfig",
    "utcnow",
    "ExternalType",
    "ExternalData",
    "MappedData",
    "SearchIndexEntry",
    "RepositoryMetadata",
    "IssueMetadata",
    "PullRequestMetadata",
    "CommitMetadata",
    "GitHubRepository",
    "GitHubIssue",
    "GitHubPullRequest",
    "GitHubCommit",
    "Issue",
    "IssueProject",
    "IssueStatus",
    "MagicWordMatch",
    "IssueClosedByCommitEvent",
    "SyncJob",
    "SyncStatus",
    "SyncResource",
]
