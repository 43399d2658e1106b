"""Access to internal issues for commit and pull request linking."""

from typing import Optional, Protocol
import logging

from codehost_sync.core.database import Database, COLLECTIONS
from codehost_sync.models import Issue

logger = logging.getLogger(__name__)


class IssueStore(Protocol):
    async def find_by_number(self, project_key: str, number: int) -> Optional[Issue]:
        ...

    async def save(self, issue: Issue) -> Issue:
        ...


class MongoIssueStore:
    """IssueStore over the ``issues`` collection."""

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["issues"])

    async def find_by_number(self, project_key: str, number: int) -> Optional[Issue]:
        doc = await self.collection.find_one({"project.key": project_key, "number": number})
        if doc:
            return Issue.model_validate(doc)
        return None

    async def save(self, issue: Issue) -> Issue:
        await self.collection.update_one(
            {"_id": issue.id},
            {"$set": {"status": issue.status.value}},
        )
        return issue
