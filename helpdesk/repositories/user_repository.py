from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from helpdesk.utils.dates import utcnow


class UserRepository:
    """Accounts, roles and profiles. Three collections, all keyed by the user id string."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")
        self._roles = db.get_collection("user_roles")
        self._profiles = db.get_collection("profiles")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("email", ASCENDING)], unique=True)
        await self._roles.create_index([("user_id", ASCENDING)])
        await self._roles.create_index([("role", ASCENDING)])
        await self._profiles.create_index([("user_id", ASCENDING)], unique=True)

    async def create_user(self, email: str, hashed_password: str) -> str:

        doc = {"email": email, "hashed_password": hashed_password, "created_at": utcnow()}
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_user_by_email(self, email: str) -> Optional[dict]:

        user = await self._collection.find_one({"email": email})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        user = await self._collection.find_one({"_id": oid})
        if user:
            user["_id"] = str(user["_id"])
        return user

    async def set_password(self, user_id: str, hashed_password: str) -> bool:
        result = await self._collection.update_one(
            {"_id": ObjectId(user_id)}, {"$set": {"hashed_password": hashed_password}}
        )
        return bool(result.matched_count)

    # roles

    async def add_role(self, user_id: str, role: str) -> None:
        await self._roles.insert_one({"user_id": user_id, "role": role})

    async def get_role(self, user_id: str) -> Optional[str]:
        doc = await self._roles.find_one({"user_id": user_id})
        return doc["role"] if doc else None

    async def find_first_admin_id(self) -> Optional[str]:
        doc = await self._roles.find_one({"role": "admin"})
        return doc["user_id"] if doc else None

    # profiles

    async def create_profile(self, user_id: str, full_name: str) -> None:
        await self._profiles.insert_one(
            {"user_id": user_id, "full_name": full_name, "avatar_url": None, "created_at": utcnow()}
        )

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._profiles.find_one({"user_id": user_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_full_name(self, user_id: str) -> Optional[str]:
        doc = await self._profiles.find_one({"user_id": user_id}, {"full_name": 1})
        return doc.get("full_name") if doc else None

    async def update_profile(self, user_id: str, fields: Dict[str, Any]) -> bool:
        result = await self._profiles.update_one({"user_id": user_id}, {"$set": fields})
        return bool(result.matched_count)

    async def list_profiles(self) -> List[Dict[str, Any]]:
        items = await self._profiles.find({}).sort("created_at", ASCENDING).to_list(length=None)
        for it in items:
            it["_id"] = str(it["_id"])
        return items

    async def count_profiles(self) -> int:
        return await self._profiles.count_documents({})
