"""Database connections and utilities."""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from typing import Optional
import logging

from codehost_sync.core.config import get_settings

logger = logging.getLogger(__name__)


# Collection names
COLLECTIONS = {
    "integrations": "integrations",
    "external_data": "external_data",
    "search_index": "search_index",
    "sync_jobs": "sync_jobs",
    "issues": "issues",
}


class Database:
    """Database connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """Connect to MongoDB."""
        settings = get_settings()
        try:
            self.client = AsyncIOMotorClient(settings.mongodb_url)
            self.db = self.client[settings.mongodb_db_name]

            # Test connection
            await self.client.admin.command("ping")
            logger.info("Connected to MongoDB")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

        await self.ensure_indexes()

    async def disconnect(self):
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def ensure_indexes(self):
        """Create the unique keys the upsert paths rely on."""
        external_key = [
            ("integration_id", ASCENDING),
            ("external_id", ASCENDING),
            ("external_type", ASCENDING),
        ]
        await self.get_collection(COLLECTIONS["external_data"]).create_index(
            external_key, unique=True
        )
        await self.get_collection(COLLECTIONS["search_index"]).create_index(
            [
                ("integration_id", ASCENDING),
                ("external_id", ASCENDING),
                ("content_type", ASCENDING),
            ],
            unique=True,
        )
        await self.get_collection(COLLECTIONS["integrations"]).create_index(
            [("installation_id", ASCENDING)]
        )
        await self.get_collection(COLLECTIONS["issues"]).create_index(
            [("project.key", ASCENDING), ("number", ASCENDING)], unique=True
        )

    def get_collection(self, name: str):
        """Get a collection."""
        if self.db is None:
            raise RuntimeError("Database not connected")
        return self.db[name]


# Global database instance
database = Database()
