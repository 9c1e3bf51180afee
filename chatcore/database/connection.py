import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatcore.config import config
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository


logger = logging.getLogger(__name__)


class _Mongo:

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None


_mongo = _Mongo()


async def connect_to_mongo() -> None:
    _mongo.client = AsyncIOMotorClient(config.MONGODB_URL, tz_aware=True)
    _mongo.db = _mongo.client[config.MONGODB_DB]
    await ConversationRepository(_mongo.db).ensure_indexes()
    await MessageRepository(_mongo.db).ensure_indexes()
    logger.info("Connected to MongoDB database %s", config.MONGODB_DB)


async def close_mongo_connection() -> None:
    if _mongo.client is not None:
        _mongo.client.close()
        _mongo.client = None
        _mongo.db = None
        logger.info("MongoDB connection closed")


def get_database() -> AsyncIOMotorDatabase:
    if _mongo.db is None:
        raise RuntimeError("MongoDB is not connected")
    return _mongo.db


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
