import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import bearer_token, create_access_token, get_password_hash, verify_password, verify_token
from config import Settings, get_settings
from database import (
    GROUP_HABIT_ENTRIES,
    GROUPS,
    HABITS,
    USER_HABIT_ENTRIES,
    USERS,
    connect,
    ensure_indexes,
    get_db,
    storage_errors,
)
from errors import CruwError, InvalidCredentialsError, InvalidTokenError, NotFoundError
from observability import setup_logging
from schemas import (
    GroupCreate,
    GroupHabitEntryCreate,
    HabitCreate,
    LoginIn,
    UserCreate,
    UserHabitEntryCreate,
    day_bounds,
    normalize_email,
    to_object_id,
)

logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = {"password": 0}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    try:
        client, db = connect(settings.atlas_uri, settings.database_name)
        ensure_indexes(db)
    except PyMongoError as e:
        # Never start listening without a database.
        logger.critical(f"Failed to connect to MongoDB or start server: {e}")
        raise
    app.state.mongo_client = client
    app.state.db = db
    logger.info(f"CRUW Backend listening on port {settings.port}")
    yield
    logger.info("Server is shutting down...")
    client.close()
    logger.info("MongoDB connection closed.")


# App setup
app = FastAPI(title="CRUW Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------- Error handlers ---------

@app.exception_handler(CruwError)
async def cruw_error_handler(request: Request, exc: CruwError):
    log = logger.error if exc.http_status >= 500 else logger.info
    log(f"{type(exc).__name__}: {exc.message}", extra={"error_code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "category": "validation",
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in e["loc"]),
                        "message": e["msg"],
                        "type": e["type"],
                    }
                    for e in exc.errors()
                ],
            }
        },
    )


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred", "category": "internal"}},
    )


# -------- Utilities ---------

def serialize(value: Any) -> Any:
    """Make a stored document JSON-safe: ObjectIds to hex, datetimes to ISO (UTC)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def serialize_docs(cursor) -> List[Dict[str, Any]]:
    return [serialize(doc) for doc in cursor]


@app.get("/")
def read_root():
    return {"message": "CRUW Backend is running!"}


# -------- Habits ---------

@app.post("/api/habits", status_code=status.HTTP_201_CREATED)
def create_habit(body: HabitCreate, db: Database = Depends(get_db)):
    habit_doc = {k: v for k, v in (body.model_extra or {}).items() if k != "_id"}
    habit_doc.update({
        "title": body.title,
        "createdBy": ObjectId(body.createdBy),
        "assignedTo": {"type": body.assignedTo.type, "id": ObjectId(body.assignedTo.id)},
        "schedule": body.schedule,
        "createdAt": datetime.now(timezone.utc),
    })
    with storage_errors("create habit"):
        res = db[HABITS].insert_one(habit_doc)
    return {
        "message": "Habit created successfully!",
        "insertedId": str(res.inserted_id),
        "insertedHabit": serialize(habit_doc),
    }


# -------- Users ---------

@app.post("/api/users", status_code=status.HTTP_201_CREATED)
def create_user(body: UserCreate, db: Database = Depends(get_db)):
    user_doc = {
        "username": body.username,
        "email": body.email,
        "password": get_password_hash(body.password),
        "createdAt": datetime.now(timezone.utc),
    }
    with storage_errors("create user", "User with that email or username already exists."):
        res = db[USERS].insert_one(user_doc)
    logger.info("User created", extra={"user_id": str(res.inserted_id)})
    # Never echo the hash back.
    return {
        "message": "User created successfully!",
        "insertedId": str(res.inserted_id),
        "username": user_doc["username"],
        "email": user_doc["email"],
    }


@app.get("/api/users/{user_id}/habits")
def get_user_habits(user_id: str, db: Database = Depends(get_db)):
    uid = to_object_id(user_id, "userId")
    query = {"$or": [{"createdBy": uid}, {"assignedTo.type": "user", "assignedTo.id": uid}]}
    with storage_errors("fetch user habits"):
        return serialize_docs(db[HABITS].find(query))


@app.get("/api/users/{user_id}/groups")
def get_user_groups(user_id: str, db: Database = Depends(get_db)):
    uid = to_object_id(user_id, "userId")
    with storage_errors("fetch user groups"):
        return serialize_docs(db[GROUPS].find({"memberIds": uid}))


@app.get("/api/users/{user_id}/habitEntries/{date}")
def get_user_habit_entries(user_id: str, date: str, db: Database = Depends(get_db)):
    uid = to_object_id(user_id, "userId")
    start, end = day_bounds(date)
    with storage_errors("fetch user habit entries"):
        return serialize_docs(db[USER_HABIT_ENTRIES].find({"userId": uid, "date": {"$gte": start, "$lte": end}}))


@app.get("/api/users/{user_id}/mostLoggedHabit")
def get_most_logged_habit(user_id: str, db: Database = Depends(get_db)):
    uid = to_object_id(user_id, "userId")
    pipeline = [
        {"$match": {"userId": uid}},
        {"$group": {"_id": "$habitId", "count": {"$sum": 1}}},
        {"$lookup": {"from": HABITS, "localField": "_id", "foreignField": "_id", "as": "habit"}},
        {"$unwind": "$habit"},
        # Ties go to the habit that was created first.
        {"$sort": {"count": -1, "habit.createdAt": 1}},
        {"$limit": 1},
        {"$project": {"_id": 0, "habitId": "$_id", "title": "$habit.title", "count": 1}},
    ]
    with storage_errors("aggregate most logged habit"):
        top = list(db[USER_HABIT_ENTRIES].aggregate(pipeline))
    if not top:
        raise NotFoundError("Habit entries", user_id, "No habit entries found for this user.")
    return serialize(top[0])


@app.get("/api/users/{user_id}/createdAt")
def get_user_created_at(user_id: str, db: Database = Depends(get_db)):
    uid = to_object_id(user_id, "userId")
    with storage_errors("fetch user"):
        user = db[USERS].find_one({"_id": uid}, {"createdAt": 1})
    if not user:
        raise NotFoundError("User", user_id, "User not found.")
    return {"createdAt": serialize(user.get("createdAt"))}


# -------- Auth ---------

@app.post("/api/auth/login")
def login(body: LoginIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = normalize_email(body.email)
    user = None
    if email is not None:
        with storage_errors("look up user"):
            user = db[USERS].find_one({"email": email})
    # Unknown e-mail and wrong password must be indistinguishable.
    if not user or not user.get("password") or not verify_password(body.password, user["password"]):
        raise InvalidCredentialsError()
    token = create_access_token(str(user["_id"]), user["username"], settings)
    return {
        "message": "Login successful!",
        "token": token,
        "user": {"id": str(user["_id"]), "username": user["username"], "email": user["email"]},
    }


@app.post("/api/auth/logout")
def logout():
    # Tokens are stateless; the client discards its copy.
    return {"message": "Logged out successfully."}


@app.get("/api/auth/status")
def auth_status(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    payload = verify_token(bearer_token(authorization), settings)
    if not ObjectId.is_valid(payload.user_id):
        raise InvalidTokenError()
    with storage_errors("fetch user"):
        user = db[USERS].find_one({"_id": ObjectId(payload.user_id)}, PUBLIC_USER_FIELDS)
    if not user:
        raise NotFoundError("User", payload.user_id, "User not found.")
    return {"authenticated": True, "user": serialize(user)}


# -------- Groups ---------

@app.post("/api/groups", status_code=status.HTTP_201_CREATED)
def create_group(body: GroupCreate, db: Database = Depends(get_db)):
    owner_id = ObjectId(body.ownerId)
    if body.memberIds is None:
        member_ids = [owner_id]
    else:
        member_ids = [ObjectId(m) for m in body.memberIds]
    group_doc = {
        "name": body.name,
        "description": body.description,
        "ownerId": owner_id,
        "memberIds": member_ids,
        "createdAt": datetime.now(timezone.utc),
    }
    with storage_errors("create group", "A group with that name already exists."):
        res = db[GROUPS].insert_one(group_doc)
    return {
        "message": "Group created successfully!",
        "insertedId": str(res.inserted_id),
        "insertedGroup": serialize(group_doc),
    }


@app.get("/api/groups/{group_id}/habits")
def get_group_habits(group_id: str, db: Database = Depends(get_db)):
    gid = to_object_id(group_id, "groupId")
    with storage_errors("fetch group habits"):
        return serialize_docs(db[HABITS].find({"assignedTo.type": "group", "assignedTo.id": gid}))


@app.get("/api/groups/{group_id}/habitEntries/{date}")
def get_group_habit_entries(group_id: str, date: str, db: Database = Depends(get_db)):
    gid = to_object_id(group_id, "groupId")
    start, end = day_bounds(date)
    with storage_errors("fetch group habit entries"):
        return serialize_docs(db[GROUP_HABIT_ENTRIES].find({"groupId": gid, "date": {"$gte": start, "$lte": end}}))


@app.get("/api/groups/{group_id}/members/completion/{date}")
def get_group_member_completion(group_id: str, date: str, db: Database = Depends(get_db)):
    """Per-member count of distinct group habits confirmed on a day.

    The reads below are separate queries, so a write landing between them can
    show up in one and not the others.
    """
    gid = to_object_id(group_id, "groupId")
    start, end = day_bounds(date)

    with storage_errors("compute group completion"):
        group = db[GROUPS].find_one({"_id": gid})
        if not group:
            raise NotFoundError("Group", group_id, "Group not found.")
        members = list(db[USERS].find({"_id": {"$in": group.get("memberIds", [])}}, PUBLIC_USER_FIELDS))
        total = db[HABITS].count_documents({"assignedTo.type": "group", "assignedTo.id": gid})
        entries = db[GROUP_HABIT_ENTRIES].find({"groupId": gid, "date": {"$gte": start, "$lte": end}})

        # Distinct habits per member: a repeated confirmation counts once.
        completed = defaultdict(set)
        for entry in entries:
            for member_id in entry.get("checkedBy", []):
                completed[str(member_id)].add(str(entry["habitId"]))

    summary = []
    for member in members:
        row = serialize(member)
        row["completedGroupHabits"] = len(completed[str(member["_id"])])
        row["totalGroupHabits"] = total
        summary.append(row)
    return summary


# -------- Habit entries ---------

@app.post("/api/userHabitEntries", status_code=status.HTTP_201_CREATED)
def create_user_habit_entry(body: UserHabitEntryCreate, db: Database = Depends(get_db)):
    entry_doc = {
        "habitId": ObjectId(body.habitId),
        "userId": ObjectId(body.userId),
        "date": body.date,
        "status": body.status,
        "createdAt": datetime.now(timezone.utc),
    }
    if body.notes is not None:
        entry_doc["notes"] = body.notes
    with storage_errors("create user habit entry"):
        res = db[USER_HABIT_ENTRIES].insert_one(entry_doc)
    return {
        "message": "Habit entry logged successfully!",
        "insertedId": str(res.inserted_id),
        "insertedEntry": serialize(entry_doc),
    }


@app.post("/api/groupHabitEntries", status_code=status.HTTP_201_CREATED)
def create_group_habit_entry(body: GroupHabitEntryCreate, db: Database = Depends(get_db)):
    entry_doc = {
        "habitId": ObjectId(body.habitId),
        "groupId": ObjectId(body.groupId),
        "date": body.date,
        "checkedBy": [ObjectId(m) for m in body.checkedBy],
        "notes": body.notes,
        "createdAt": datetime.now(timezone.utc),
    }
    with storage_errors("create group habit entry"):
        res = db[GROUP_HABIT_ENTRIES].insert_one(entry_doc)
    return {
        "message": "Group habit entry logged successfully!",
        "insertedId": str(res.inserted_id),
        "insertedEntry": serialize(entry_doc),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port)
