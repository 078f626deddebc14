"""Async MongoDB Client using Motor for async operations"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global async client instance
_async_client: Optional[AsyncIOMotorClient] = None
_async_database: Optional[AsyncIOMotorDatabase] = None


def get_async_client() -> AsyncIOMotorClient:
    """Get or create async MongoDB client using Motor"""
    global _async_client
    if _async_client is None:
        logger.info(f"Creating async MongoDB client for: {settings.mongo_uri}")
        _async_client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
    return _async_client


def get_async_database() -> AsyncIOMotorDatabase:
    """Get the async application database"""
    global _async_database
    if _async_database is None:
        client = get_async_client()
        _async_database = client[settings.mongo_db]
        logger.info(f"Using async database: {settings.mongo_db}")
    return _async_database


def get_async_collection(
    name: str,
    database: Optional[AsyncIOMotorDatabase] = None
) -> AsyncIOMotorCollection:
    """Get a collection from the given or the application database"""
    db = database if database is not None else get_async_database()
    return db[name]


async def create_indexes(database: Optional[AsyncIOMotorDatabase] = None) -> None:
    """Create all required indexes"""
    db = database if database is not None else get_async_database()
    logger.info("Creating MongoDB indexes...")

    # Staff accounts - identity lookups
    staff = db["staff_accounts"]
    await staff.create_index([("canonical_identity_key", ASCENDING), ("is_active", ASCENDING)])
    await staff.create_index([("email", ASCENDING), ("is_active", ASCENDING)])
    await staff.create_index("is_active")

    # Job collections - keyed on the canonical identity only
    for name in settings.job_collections_list:
        jobs = db[name]
        await jobs.create_index([("assigned_identity_key", ASCENDING), ("created_at", ASCENDING)])
        await jobs.create_index("status")

    # Notifications - ordered stream per identity
    notifications = db["notifications"]
    await notifications.create_index(
        [("target_identity_key", ASCENDING), ("created_at", ASCENDING), ("event_id", ASCENDING)]
    )
    await notifications.create_index([("target_identity_key", ASCENDING), ("read", ASCENDING)])

    # Audit reports - one per (identity, period)
    reports = db["audit_reports"]
    await reports.create_index(
        [("canonical_identity_key", ASCENDING), ("period_id", ASCENDING)],
        unique=True
    )
    await reports.create_index([("status", ASCENDING), ("next_retry_at", ASCENDING)])
    await reports.create_index("period_id")

    logger.info("MongoDB indexes created successfully")


async def close_async_connection() -> None:
    """Close async MongoDB connection"""
    global _async_client, _async_database
    if _async_client is not None:
        _async_client.close()
        _async_client = None
        _async_database = None
        logger.info("Async MongoDB connection closed")


async def async_health_check() -> dict:
    """Check async MongoDB health"""
    try:
        client = get_async_client()
        await client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok",
            "type": "async"
        }
    except Exception as e:
        logger.error(f"Async MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e),
            "type": "async"
        }
