from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from helpdesk.models.conversation import Side
from helpdesk.utils.dates import utcnow


UNREAD_FIELDS = {"admin": "unread_by_admin", "student": "unread_by_student"}


def _to_object_id(conversation_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(conversation_id)
    except (InvalidId, TypeError):
        return None


def _normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc:
        doc["_id"] = str(doc.get("_id"))
    return doc


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # one conversation per student
        await self.collection.create_index([("student_id", ASCENDING)], unique=True)
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        oid = _to_object_id(conversation_id)
        if oid is None:
            return None
        return _normalize(await self.collection.find_one({"_id": oid}))

    async def get_by_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        return _normalize(await self.collection.find_one({"student_id": student_id}))

    async def get_or_create_for_student(self, student_id: str, admin_id: Optional[str]) -> Dict[str, Any]:
        now = utcnow()
        try:
            doc = await self.collection.find_one_and_update(
                {"student_id": student_id},
                {
                    "$setOnInsert": {
                        "admin_id": admin_id,
                        "last_message": None,
                        "last_message_at": now,
                        "unread_by_admin": 0,
                        "unread_by_student": 0,
                        "created_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # a concurrent upsert for the same student won
            doc = await self.collection.find_one({"student_id": student_id})
        return _normalize(doc)

    async def update_on_new_message(self, conversation_id: str, preview: str, sent_at, recipient_side: Side) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one_and_update(
            {"_id": _to_object_id(conversation_id)},
            {
                "$set": {"last_message": preview, "last_message_at": sent_at},
                "$inc": {UNREAD_FIELDS[recipient_side]: 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return _normalize(doc)

    async def set_preview(
        self, conversation_id: str, preview: Optional[str], sent_at, recipient_side: Optional[Side] = None
    ) -> Optional[Dict[str, Any]]:
        update: Dict[str, Any] = {"$set": {"last_message": preview, "last_message_at": sent_at}}
        if recipient_side is not None:
            update["$inc"] = {UNREAD_FIELDS[recipient_side]: 1}
        doc = await self.collection.find_one_and_update(
            {"_id": _to_object_id(conversation_id)},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return _normalize(doc)

    async def reset_unread(self, conversation_id: str, side: Side) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one_and_update(
            {"_id": _to_object_id(conversation_id)},
            {"$set": {UNREAD_FIELDS[side]: 0}},
            return_document=ReturnDocument.AFTER,
        )
        return _normalize(doc)

    async def list_all(self) -> List[Dict[str, Any]]:
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        items = await self.collection.find({}).sort(sort).to_list(length=None)
        for it in items:
            _normalize(it)
        return items
