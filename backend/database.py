"""
Database connection and configuration

Fails fast with clear error messages if required variables are missing.
The client is created by the entry point and handed to the store; nothing
connects at import time.
"""
import os
import logging
from typing import Dict, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

logger = logging.getLogger(__name__)

DATABASE_VARS = {
    "MONGO_URL": "MongoDB connection string (e.g., mongodb://localhost:27017)",
    "DB_NAME": "Database name (e.g., slot_engine)",
}


def validate_required_env_vars(required_vars: Dict[str, str] = DATABASE_VARS):
    """
    Validate critical environment variables exist before the app starts.
    Raises ValueError with clear error message if required variables are missing.
    """
    missing = []
    for var, description in required_vars.items():
        if not os.environ.get(var):
            missing.append(f"  - {var}: {description}")

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check your .env file or environment configuration.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


def create_client(mongo_url: Optional[str] = None) -> AsyncIOMotorClient:
    """MongoDB client with connection pool configuration and tz-aware datetimes."""
    try:
        return AsyncIOMotorClient(
            mongo_url or os.environ["MONGO_URL"],
            maxPoolSize=50,
            minPoolSize=5,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True,
            tz_aware=True,
        )
    except Exception as e:
        raise ValueError(f"Failed to create MongoDB client: {e}") from e


def get_database(client: AsyncIOMotorClient, db_name: Optional[str] = None) -> AsyncIOMotorDatabase:
    return client[db_name or os.environ["DB_NAME"]]


async def check_db_connection(client: AsyncIOMotorClient, db) -> Tuple[bool, Optional[str]]:
    """
    Test database connection health.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    try:
        await client.admin.command("ping")
        await db.list_collection_names()

        logger.info(f"Database connected successfully: {db.name}")
        return True, None

    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg
