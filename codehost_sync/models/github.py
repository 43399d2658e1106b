"""GitHub REST payload models.

Each entity kind knows how to normalize itself into ``MappedData``. Unknown
fields are kept so ``raw_data`` can be stored exactly as received.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List, ClassVar
from pydantic import BaseModel, ConfigDict, Field

from codehost_sync.models.external_data import (
    ExternalType,
    MappedData,
    RepositoryMetadata,
    IssueMetadata,
    PullRequestMetadata,
    CommitMetadata,
)


class GitHubModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    external_type: ClassVar[ExternalType]

    @property
    def external_id(self) -> str:
        raise NotImplementedError

    def normalize(self) -> MappedData:
        raise NotImplementedError


class GitHubUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    login: str
    id: Optional[int] = None


class GitHubLabel(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str


class GitHubMilestone(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str


class GitHubBranchRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    ref: str
    sha: Optional[str] = None


class GitHubRepository(GitHubModel):
    external_type: ClassVar[ExternalType] = ExternalType.REPOSITORY

    id: int
    name: str
    full_name: str
    owner: Optional[GitHubUser] = None
    description: Optional[str] = None
    private: bool = False
    html_url: Optional[str] = None
    default_branch: Optional[str] = None
    language: Optional[str] = None
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0

    @property
    def external_id(self) -> str:
        return str(self.id)

    def normalize(self) -> MappedData:
        owner = self.owner.login if self.owner else None
        return MappedData(
            title=self.full_name,
            content=self.description or "",
            author=owner or "unknown",
            url=self.html_url,
            metadata=RepositoryMetadata(
                owner=owner,
                private=self.private,
                default_branch=self.default_branch,
                language=self.language,
                stars=self.stargazers_count,
                forks=self.forks_count,
                open_issues=self.open_issues_count,
            ),
        )


class GitHubIssue(GitHubModel):
    external_type: ClassVar[ExternalType] = ExternalType.ISSUE

    id: int
    number: int
    title: str
    body: Optional[str] = None
    state: str = "open"
    html_url: Optional[str] = None
    user: Optional[GitHubUser] = None
    labels: List[GitHubLabel] = Field(default_factory=list)
    assignees: List[GitHubUser] = Field(default_factory=list)
    milestone: Optional[GitHubMilestone] = None
    repository: Optional[str] = None

    # Present when the issues listing returns a pull request
    pull_request: Optional[Dict[str, Any]] = None

    @property
    def external_id(self) -> str:
        return str(self.id)

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    def normalize(self) -> MappedData:
        return MappedData(
            title=f"#{self.number}: {self.title}",
            content=self.body or "",
            author=self.user.login if self.user else "unknown",
            url=self.html_url,
            metadata=IssueMetadata(
                number=self.number,
                state=self.state,
                labels=[label.name for label in self.labels],
                assignees=[assignee.login for assignee in self.assignees],
                milestone=self.milestone.title if self.milestone else None,
                repository=self.repository,
            ),
        )


class GitHubPullRequest(GitHubModel):
    external_type: ClassVar[ExternalType] = ExternalType.PULL_REQUEST

    id: int
    number: int
    title: str
    body: Optional[str] = None
    state: str = "open"
    html_url: Optional[str] = None
    user: Optional[GitHubUser] = None
    labels: List[GitHubLabel] = Field(default_factory=list)
    assignees: List[GitHubUser] = Field(default_factory=list)
    head: GitHubBranchRef
    base: GitHubBranchRef
    mergeable: Optional[bool] = None
    merged: bool = False
    merged_at: Optional[datetime] = None
    merged_by: Optional[GitHubUser] = None
    repository: Optional[str] = None

    @property
    def external_id(self) -> str:
        return str(self.id)

    def normalize(self) -> MappedData:
        return MappedData(
            title=f"PR #{self.number}: {self.title}",
            content=self.body or "",
            author=self.user.login if self.user else "unknown",
            url=self.html_url,
            metadata=PullRequestMetadata(
                number=self.number,
                state=self.state,
                labels=[label.name for label in self.labels],
                assignees=[assignee.login for assignee in self.assignees],
                head_branch=self.head.ref,
                base_branch=self.base.ref,
                mergeable=self.mergeable,
                merged=self.merged,
                repository=self.repository,
            ),
        )


class GitHubCommitAuthor(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = "unknown"
    email: Optional[str] = None
    date: Optional[datetime] = None


class GitHubCommitDetail(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str
    author: GitHubCommitAuthor = Field(default_factory=GitHubCommitAuthor)
    committer: Optional[GitHubCommitAuthor] = None


class GitHubCommit(GitHubModel):
    external_type: ClassVar[ExternalType] = ExternalType.COMMIT

    sha: str
    html_url: Optional[str] = None
    commit: GitHubCommitDetail
    author: Optional[GitHubUser] = None
    committer: Optional[GitHubUser] = None
    repository: Optional[str] = None
    branch: Optional[str] = None

    @classmethod
    def from_push_payload(
        cls,
        commit: Dict[str, Any],
        repository: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> "GitHubCommit":
        """Build a commit from an entry of a push webhook's ``commits`` list.

        Push payloads use ``id``/``url`` and carry the author inline instead
        of the REST API's nested ``commit`` object.
        """
        author = commit.get("author") or {}
        committer = commit.get("committer") or {}
        return cls(
            sha=commit["id"],
            html_url=commit.get("url"),
            commit={
                "message": commit.get("message", ""),
                "author": {
                    "name": author.get("name") or "unknown",
                    "email": author.get("email"),
                    "date": commit.get("timestamp"),
                },
                "committer": {
                    "name": committer.get("name") or "unknown",
                    "email": committer.get("email"),
                },
            },
            author={"login": author["username"]} if author.get("username") else None,
            committer=(
                {"login": committer["username"]} if committer.get("username") else None
            ),
            repository=repository,
            branch=branch,
        )

    @property
    def external_id(self) -> str:
        return self.sha

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def headline(self) -> str:
        return self.commit.message.split("\n")[0]

    def normalize(self) -> MappedData:
        return MappedData(
            title=self.headline,
            content=self.commit.message,
            author=self.commit.author.name,
            url=self.html_url,
            metadata=CommitMetadata(
                sha=self.sha,
                short_sha=self.short_sha,
                author=self.author.login if self.author else None,
                committer=self.committer.login if self.committer else None,
                repository=self.repository,
                branch=self.branch,
            ),
        )
