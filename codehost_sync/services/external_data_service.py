"""Storage of synced remote entities, link records and the search index."""

from typing import List, Dict, Any, Optional
import logging

from codehost_sync.core.database import Database, COLLECTIONS
from codehost_sync.models import (
    ExternalData,
    ExternalType,
    MappedData,
    SearchIndexEntry,
    utcnow,
)

logger = logging.getLogger(__name__)


class ExternalDataService:
    """Upserts keyed by ``(integration_id, external_id, external_type)``.

    Writes go through ``update_one(..., upsert=True)`` against the unique
    index created in ``Database.ensure_indexes``, so repeated or concurrent
    syncs of the same entity converge on one document.
    """

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["external_data"])

    @property
    def search_collection(self):
        return self.db.get_collection(COLLECTIONS["search_index"])

    async def upsert(
        self,
        integration_id: str,
        external_type: ExternalType,
        external_id: str,
        raw_data: Dict[str, Any],
        mapped_data: Optional[MappedData] = None,
    ) -> ExternalData:
        record = ExternalData(
            integration_id=integration_id,
            external_id=str(external_id),
            external_type=external_type,
            raw_data=raw_data,
            mapped_data=mapped_data,
            search_text=mapped_data.search_text if mapped_data else None,
            last_sync_at=utcnow(),
        )
        document = record.model_dump(exclude=set(record.key))

        await self.collection.update_one(
            record.key,
            {
                "$set": document,
                "$setOnInsert": {"created_at": record.last_sync_at},
            },
            upsert=True,
        )

        if mapped_data is not None:
            await self.index(integration_id, external_type, str(external_id), mapped_data)

        return record

    async def index(
        self,
        integration_id: str,
        external_type: ExternalType,
        external_id: str,
        mapped_data: MappedData,
    ) -> SearchIndexEntry:
        """Upsert the search projection under the same key as the record."""
        entry = SearchIndexEntry.from_mapped(
            integration_id, external_id, external_type.value, mapped_data
        )
        key = {
            "integration_id": integration_id,
            "external_id": external_id,
            "content_type": external_type.value,
        }
        await self.search_collection.update_one(
            key,
            {"$set": entry.model_dump(exclude=set(key))},
            upsert=True,
        )
        return entry

    async def get(
        self,
        integration_id: str,
        external_type: ExternalType,
        external_id: str,
    ) -> Optional[ExternalData]:
        doc = await self.collection.find_one(
            {
                "integration_id": integration_id,
                "external_id": str(external_id),
                "external_type": external_type.value,
            }
        )
        if doc:
            return ExternalData.model_validate(doc)
        return None

    async def find(self, filters: Dict[str, Any], limit: int = 0) -> List[ExternalData]:
        cursor = self.collection.find(filters)
        if limit:
            cursor = cursor.limit(limit)
        return [ExternalData.model_validate(doc) async for doc in cursor]

    async def get_links_for_issue(self, issue_id: str) -> Dict[str, List[ExternalData]]:
        """Pull request and commit link records that point at an issue."""
        pull_requests = await self.find(
            {"external_type": ExternalType.PR_ISSUE_LINK.value, "raw_data.issue_id": issue_id}
        )
        commits = await self.find(
            {"external_type": ExternalType.COMMIT_ISSUE_LINK.value, "raw_data.issue_id": issue_id}
        )
        return {"pull_requests": pull_requests, "commits": commits}
