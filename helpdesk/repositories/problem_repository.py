from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from helpdesk.utils.dates import utcnow


class ProblemRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["problems"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("submitted_by", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def create(self, submitted_by: str, title: str, description: str, category: str, is_urgent: bool) -> Dict[str, Any]:
        now = utcnow()
        doc: Dict[str, Any] = {
            "title": title,
            "description": description,
            "category": category,
            "status": "pending",
            "is_urgent": is_urgent,
            "submitted_by": submitted_by,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def list_problems(self, submitted_by: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if submitted_by:
            query["submitted_by"] = submitted_by
        cur = self.collection.find(query).sort("created_at", DESCENDING)
        if limit:
            cur = cur.limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def update_status(self, problem_id: str, status: str) -> Optional[Dict[str, Any]]:
        try:
            oid = ObjectId(problem_id)
        except (InvalidId, TypeError):
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def count_by_submitter(self, submitted_by: str) -> int:
        return await self.collection.count_documents({"submitted_by": submitted_by})
