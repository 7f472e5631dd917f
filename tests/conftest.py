"""Shared fixtures: an in-memory Mongo per test and an ASGI client wired to it.

The database dependency is overridden, so the app lifespan (and with it the
real MongoClient) never runs during tests.
"""
import os

# Must be set before config/main are imported.
os.environ.setdefault("ATLAS_URI", "mongodb://localhost:27017")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import datetime  # noqa: E402

import mongomock  # noqa: E402
import pytest  # noqa: E402
from bson import ObjectId  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from auth import get_password_hash  # noqa: E402
from database import GROUPS, HABITS, USERS, ensure_indexes, get_db  # noqa: E402
from main import app  # noqa: E402


@pytest.fixture
def mongo_db():
    mongo_client = mongomock.MongoClient()
    db = mongo_client["cruw_test"]
    ensure_indexes(db)
    yield db
    mongo_client.close()


@pytest.fixture
async def client(mongo_db):
    """FastAPI test client with get_db overridden."""
    app.dependency_overrides[get_db] = lambda: mongo_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def seed_user(mongo_db):
    """Insert a user directly; returns a factory."""
    def _seed(username="alice", email="alice@x.com", password="secret", created_at=None):
        doc = {
            "username": username,
            "email": email,
            "password": get_password_hash(password),
            "createdAt": created_at or datetime(2024, 1, 15, 9, 30),
        }
        doc["_id"] = mongo_db[USERS].insert_one(doc).inserted_id
        return doc
    return _seed


@pytest.fixture
def seed_group(mongo_db):
    def _seed(name, owner_id, member_ids=None):
        doc = {
            "name": name,
            "description": "",
            "ownerId": owner_id,
            "memberIds": member_ids if member_ids is not None else [owner_id],
            "createdAt": datetime(2024, 1, 20),
        }
        doc["_id"] = mongo_db[GROUPS].insert_one(doc).inserted_id
        return doc
    return _seed


@pytest.fixture
def seed_habit(mongo_db):
    def _seed(title, created_by, assigned_type="user", assigned_id=None, created_at=None):
        doc = {
            "title": title,
            "createdBy": created_by,
            "assignedTo": {"type": assigned_type, "id": assigned_id or created_by},
            "schedule": "daily",
            "createdAt": created_at or datetime(2024, 2, 1),
        }
        doc["_id"] = mongo_db[HABITS].insert_one(doc).inserted_id
        return doc
    return _seed


@pytest.fixture
def fresh_id():
    return lambda: str(ObjectId())
