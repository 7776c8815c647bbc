import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from helpdesk.config import get_settings


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> AsyncIOMotorDatabase:
    global _client, _db
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    _db = _client[settings.MONGODB_DB]
    await ensure_indexes(_db)
    logger.info("Connected to MongoDB database %s", settings.MONGODB_DB)
    return _db


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("Database is not connected")
    return _db


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # imported here to keep repositories free of connection state
    from helpdesk.repositories.conversation_repository import ConversationRepository
    from helpdesk.repositories.message_repository import MessageRepository
    from helpdesk.repositories.problem_repository import ProblemRepository
    from helpdesk.repositories.user_repository import UserRepository

    await UserRepository(db).ensure_indexes()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await ProblemRepository(db).ensure_indexes()
