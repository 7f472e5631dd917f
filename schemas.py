"""
Request schemas for the CRUW API.

Each model is the input shape of one endpoint and is validated before any
database call. Reference fields hold ObjectId hex strings; they are checked
here and converted to ObjectId when the document is built.

Collections written by these inputs:
- UserCreate -> "users"
- GroupCreate -> "groups"
- HabitCreate -> "habits"
- UserHabitEntryCreate -> "userHabitEntries"
- GroupHabitEntryCreate -> "groupHabitEntries"
"""
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field

from errors import ValidationError


# -------- Identifier and date helpers ---------

def to_object_id(value: str, field: str = "id") -> ObjectId:
    """Convert a client-supplied id into an ObjectId or raise a 400."""
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {field} format.", field=field)
    return ObjectId(value)


def _check_object_id(value: str) -> str:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValueError("must be a 24-character hex ObjectId")
    return value


def parse_day(text: str) -> datetime:
    """Normalize calendar-day text (or an ISO timestamp) to 00:00 UTC of that day.

    Returned as a naive datetime; BSON stores naive datetimes as UTC.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError("date is required")
    try:
        parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"invalid date '{text}', expected YYYY-MM-DD")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


def day_bounds(text: str):
    """Inclusive [00:00:00.000, 23:59:59.999] UTC range for a calendar day."""
    try:
        start = parse_day(text)
    except ValueError as e:
        raise ValidationError(str(e), field="date")
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]
Day = Annotated[datetime, BeforeValidator(parse_day)]


# -------- Users / auth ---------

class UserCreate(BaseModel):
    # Explicit allow-list: anything else in the body is rejected.
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginIn(BaseModel):
    # Plain str: a malformed e-mail gets the same 401 as an unknown one.
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def normalize_email(text: str) -> Optional[str]:
    """Canonical form stored at signup, or None if the address does not parse."""
    try:
        return validate_email(text, check_deliverability=False).normalized
    except EmailNotValidError:
        return None


# -------- Groups ---------

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1)
    ownerId: ObjectIdStr
    description: str = ""
    memberIds: Optional[List[ObjectIdStr]] = None


# -------- Habits ---------

class AssignedTo(BaseModel):
    type: Literal["user", "group"]
    id: ObjectIdStr


class HabitCreate(BaseModel):
    # Unknown fields are stored as sent; server-set fields win.
    model_config = ConfigDict(extra="allow")

    title: str = Field(..., min_length=1)
    createdBy: ObjectIdStr
    assignedTo: AssignedTo
    schedule: Optional[Any] = None


# -------- Log entries ---------

class UserHabitEntryCreate(BaseModel):
    habitId: ObjectIdStr
    userId: ObjectIdStr
    date: Day
    status: str = "completed"
    notes: Optional[str] = None


class GroupHabitEntryCreate(BaseModel):
    habitId: ObjectIdStr
    groupId: ObjectIdStr
    date: Day
    checkedBy: List[ObjectIdStr] = Field(default_factory=list)
    # Keyed by member id.
    notes: Dict[str, str] = Field(default_factory=dict)
