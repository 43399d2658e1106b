"""Internal issue models touched by commit and pull request linking."""

from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class IssueStatus(str, Enum):
    """Issue workflow status."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class IssueProject(BaseModel):
    key: str
    organization_id: Optional[str] = None


class Issue(BaseModel):
    """The slice of an issue this service reads and writes."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="_id")
    number: int
    title: Optional[str] = None
    status: IssueStatus = IssueStatus.TODO
    project: IssueProject

    @property
    def key(self) -> str:
        return f"{self.project.key}-{self.number}"

    @property
    def is_done(self) -> bool:
        return self.status == IssueStatus.DONE


class MagicWordMatch(BaseModel):
    """A verb plus issue key found in a commit message."""
    action: Literal["close", "reference"]
    issue_key: str  # "PROJ-123" or "#123"
    raw_match: str


class IssueClosedByCommitEvent(BaseModel):
    """Payload of the ``issue.closed_by_commit`` event."""
    issue_id: str
    issue_key: str
    commit_sha: str  # short form
    commit_url: Optional[str] = None
    committer_name: str
