"""MongoDB connection management using Motor (async driver)."""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def get_database(mongodb_uri: Optional[str], db_name: str = "champions") -> Optional[AsyncIOMotorDatabase]:
    """Get the MongoDB database instance, initializing connection if needed."""
    global _client, _database

    if _database is not None:
        return _database

    if not mongodb_uri:
        logger.warning("MONGODB_URI not set, MongoDB features disabled")
        return None

    try:
        _client = AsyncIOMotorClient(
            mongodb_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            maxPoolSize=10,
            minPoolSize=2,
            maxIdleTimeMS=30000,
            retryWrites=True,
        )
        # Verify connection
        await _client.admin.command("ping")
        _database = _client[db_name]
        logger.info(f"Connected to MongoDB database {db_name}")
        return _database
    except (ConnectionFailure, ServerSelectionTimeoutError) as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        _client = None
        _database = None
        return None


async def close_connection():
    """Close the MongoDB connection."""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


async def init_indexes(db: AsyncIOMotorDatabase):
    """Create indexes for the visit log queries."""
    visits = db.visits

    # Window slice: timestamp >= since, newest first
    await visits.create_index([("timestamp", DESCENDING)])

    logger.info("MongoDB indexes created")


async def check_connection() -> bool:
    """Check if MongoDB connection is healthy."""
    global _client
    if _client is None:
        return False
    try:
        await _client.admin.command("ping")
        return True
    except Exception:
        return False
