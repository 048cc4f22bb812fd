"""
Database initialization and management.

Provides the MongoDB connection and the command history collection.
"""

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
import os
from typing import Optional
from urllib.parse import urlparse

from utils.logger import get_logger

DEFAULT_MONGODB_URL = "mongodb://localhost:27017/assistant"
HISTORY_COLLECTION = "command_history"

logger = get_logger("database")


def init_database(mongodb_url: Optional[str] = None) -> Database:
    """
    Initialize MongoDB database with the command history collection.

    Args:
        mongodb_url: MongoDB connection URL (can include database name in path)
                    If not provided, uses MONGODB_URL env var or defaults to localhost

    Returns:
        pymongo.Database: Database instance
    """
    if mongodb_url is None:
        mongodb_url = os.getenv("MONGODB_URL", DEFAULT_MONGODB_URL)

    parsed = urlparse(mongodb_url)

    # Database name comes from the URL path
    db_name = parsed.path.lstrip('/') if parsed.path and parsed.path != '/' else None
    if not db_name:
        db_name = "assistant"

    # Reconstruct base connection string without the database path
    if parsed.query:
        # Preserve query parameters (like authSource, etc.)
        connection_string = f"{parsed.scheme}://{parsed.netloc}/?{parsed.query}"
    else:
        connection_string = f"{parsed.scheme}://{parsed.netloc}/"

    client = MongoClient(connection_string)
    db = client[db_name]

    history = db[HISTORY_COLLECTION]
    history.create_index([("user_id", ASCENDING), ("executed_at", DESCENDING)])
    history.create_index([("user_id", ASCENDING), ("module_id", ASCENDING)])

    logger.info(f"Database initialized: {db_name}")
    return db
