from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from helpdesk.utils.dates import utcnow


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def save_message(self, conversation_id: str, sender_id: str, content: str) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "is_read": False,
            "created_at": utcnow(),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_messages_by_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Oldest first. With ``limit``, the newest ``limit`` messages are returned."""
        query = {"conversation_id": conversation_id}
        if limit:
            cur = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
            items = list(reversed(await cur.to_list(length=limit)))
        else:
            cur = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            items = await cur.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def get_latest(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        cur = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", DESCENDING), ("_id", DESCENDING)]
        ).limit(1)
        items = await cur.to_list(length=1)
        if not items:
            return None
        items[0]["_id"] = str(items[0].get("_id"))
        return items[0]

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        result = await self.collection.update_many(
            {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "is_read": False},
            {"$set": {"is_read": True}},
        )
        return result.modified_count or 0

    async def list_recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        cur = self.collection.find({}).sort("created_at", DESCENDING).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items
