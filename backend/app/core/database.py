import logging
from contextlib import contextmanager

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from app.core.config import settings
from app.core.exceptions import StorageFailure

logger = logging.getLogger(__name__)

# Global MongoDB client
_client: AsyncIOMotorClient = None
_database: AsyncIOMotorDatabase = None


async def connect_to_mongo():
    """Connect to MongoDB."""
    global _client, _database
    _client = AsyncIOMotorClient(settings.MONGODB_URI)
    _database = _client[settings.MONGODB_DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.MONGODB_DB_NAME}")


async def close_mongo_connection():
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        logger.info("Closed MongoDB connection")


def get_database() -> AsyncIOMotorDatabase:
    """Get MongoDB database instance."""
    return _database


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """
    Create the indexes the cart store relies on.

    - One cart per user and one cart per guest session (partial unique
      indexes, so claimed carts without a session id are not indexed)
    - TTL on expires_at so abandoned carts are purged by MongoDB
    """
    await db.carts.create_index(
        [("user_id", ASCENDING)],
        name="uniq_cart_user",
        unique=True,
        partialFilterExpression={"user_id": {"$type": "string"}}
    )
    await db.carts.create_index(
        [("session_id", ASCENDING)],
        name="uniq_cart_session",
        unique=True,
        partialFilterExpression={"session_id": {"$type": "string"}}
    )
    await db.carts.create_index(
        [("expires_at", ASCENDING)],
        name="cart_expiry",
        expireAfterSeconds=0
    )
    logger.info("Cart indexes ensured")


@contextmanager
def storage_errors(action: str):
    """Re-raise driver errors as StorageFailure."""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"MongoDB error while {action}: {str(e)}")
        raise StorageFailure(action) from e
