"""
Visits
The Visit document and the service that stores and reads it
"""

from datetime import datetime, timezone
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from visit_logger.exceptions import VisitStoreError

logger = structlog.get_logger(__name__)

COLLECTION_NAME = "visits"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Visit(BaseModel):
    """A single logged request."""

    method: str
    path: str
    timestamp: datetime = Field(default_factory=_utcnow)
    user_agent: Optional[str] = None
    ip: Optional[str] = None


class VisitsService:
    """Create and read visits in a MongoDB collection."""

    def __init__(self, collection: Collection):
        self._collection = collection

    def create(self, visit: Visit) -> Visit:
        try:
            self._collection.insert_one(visit.model_dump())
        except PyMongoError as e:
            raise VisitStoreError("Failed to record visit", {"error": str(e)}) from e
        logger.debug("visit_recorded", method=visit.method, path=visit.path)
        return visit

    def find_all(self, limit: int = 100) -> List[Visit]:
        """Most recent visits first."""
        try:
            cursor = self._collection.find({}, {"_id": 0}).sort("timestamp", DESCENDING).limit(limit)
            return [Visit(**document) for document in cursor]
        except PyMongoError as e:
            raise VisitStoreError("Failed to read visits", {"error": str(e)}) from e

    def count(self) -> int:
        try:
            return self._collection.count_documents({})
        except PyMongoError as e:
            raise VisitStoreError("Failed to count visits", {"error": str(e)}) from e
