"""MongoDB connection, index setup and the per-request database dependency.

The client is created once in the app lifespan and its Database handle lives
on ``app.state.db``. Route handlers receive it through ``get_db`` so tests can
swap in another store with ``app.dependency_overrides``.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.server_api import ServerApi

from errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
HABITS = "habits"
USER_HABIT_ENTRIES = "userHabitEntries"
GROUP_HABIT_ENTRIES = "groupHabitEntries"


def connect(uri: str, database_name: str) -> tuple[MongoClient, Database]:
    """Open the shared client and confirm the deployment answers a ping.

    Raises whatever pymongo raises; callers treat that as fatal.
    """
    client = MongoClient(uri, server_api=ServerApi("1", strict=True, deprecation_errors=True))
    try:
        client.admin.command("ping")
    except PyMongoError:
        client.close()
        raise
    logger.info("MongoDB successfully connected")
    db = client[database_name]
    logger.info(f"Connected to database: {db.name}")
    return client, db


def ensure_indexes(db: Database) -> None:
    """Unique constraints the API relies on for 409 responses."""
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[GROUPS].create_index([("name", ASCENDING)], unique=True)


def get_db(request: Request) -> Database:
    """FastAPI dependency returning the shared database handle."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise StorageError("Database not connected.", "connect")
    return db


@contextmanager
def storage_errors(operation: str, conflict_message: str = "Resource already exists.") -> Iterator[None]:
    """Translate driver exceptions raised inside the block into API errors."""
    try:
        yield
    except DuplicateKeyError as e:
        logger.warning(f"Duplicate key during {operation}: {e}", extra={"operation": operation})
        raise ConflictError(conflict_message)
    except PyMongoError as e:
        logger.error(f"Database error during {operation}: {e}", extra={"operation": operation})
        raise StorageError(f"Failed to {operation}.", operation)
