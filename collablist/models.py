# collablist/models.py
# Pydantic v2 request/response schemas. JSON uses camelCase (listId, orderedIds,
# lastCompletedAt); snake_case field names are accepted too.

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

RoleName = Literal["viewer", "editor", "owner"]
ShareRole = Literal["viewer", "editor"]
Repeat = Literal["daily", "weekly", "monthly"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _normalize_repeat(value):
    # "" (and whitespace) from form selects means "does not repeat"
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _as_utc(value):
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Auth schemas ---


class SignupRequest(BaseModel):
    username: str = Field(min_length=1, max_length=80)
    email: str | None = Field(default=None, max_length=254)
    password: str = Field(min_length=1)
    model_config = ConfigDict(
        json_schema_extra={"examples": [{"username": "alice", "email": "alice@example.com", "password": "secret"}]}
    )


class LoginRequest(BaseModel):
    # username or email
    username: str = Field(min_length=1)
    password: str


class AuthResponse(BaseModel):
    token: str
    username: str
    model_config = ConfigDict(json_schema_extra={"examples": [{"token": "<jwt>", "username": "alice"}]})


class UserPublic(CamelModel):
    id: int
    username: str
    email: str


# --- List / membership schemas ---


class ListCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class ListRename(BaseModel):
    name: str = Field(max_length=120)


class Member(CamelModel):
    user_id: int
    role: RoleName


class ListOut(CamelModel):
    id: int
    name: str
    owner_id: int
    members: list[Member]
    created_at: datetime


class MemberUpsert(CamelModel):
    user_id: int
    role: RoleName


class ShareRequest(CamelModel):
    user_id: int | None = None
    email: str | None = None
    role: ShareRole

    @model_validator(mode="after")
    def target_required(self):
        if self.user_id is None and not self.email:
            raise ValueError("userId or email is required")
        return self


class InviteAccept(BaseModel):
    token: str = Field(min_length=1)


# --- Task schemas ---


class TaskCreate(CamelModel):
    text: str = Field(min_length=1, max_length=500)
    completed: bool = False
    due: datetime | None = None
    priority: str = "medium"
    category: str = "General"
    repeat: Repeat | None = None
    model_config = ConfigDict(
        extra="ignore",  # a client-supplied listId is dropped; the URL decides
        json_schema_extra={
            "examples": [
                {"text": "Buy milk"},
                {"text": "Water plants", "due": "2025-12-31T18:00:00Z", "repeat": "weekly"},
            ]
        },
    )

    @field_validator("repeat", mode="before")
    @classmethod
    def normalize_repeat(cls, value):
        return _normalize_repeat(value)

    @field_validator("due", mode="after")
    @classmethod
    def due_as_utc(cls, value):
        return _as_utc(value)


class TaskUpdate(CamelModel):
    """Partial patch: only fields present in the payload change."""

    text: str | None = Field(default=None, min_length=1, max_length=500)
    completed: bool | None = None
    due: datetime | None = None
    priority: str | None = None
    category: str | None = None
    repeat: Repeat | None = None
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={"examples": [{"completed": True}, {"due": "2025-12-31T18:00:00Z"}]},
    )

    @field_validator("repeat", mode="before")
    @classmethod
    def normalize_repeat(cls, value):
        return _normalize_repeat(value)

    @field_validator("due", mode="after")
    @classmethod
    def due_as_utc(cls, value):
        return _as_utc(value)

    def changes(self) -> dict:
        """Fields explicitly supplied by the client (None allowed for due/repeat)."""
        data = self.model_dump(exclude_unset=True)
        # text/completed/priority/category are not nullable in the store
        for field in ("text", "completed", "priority", "category"):
            if field in data and data[field] is None:
                data.pop(field)
        return data


class TaskOut(CamelModel):
    id: int
    list_id: int
    user_id: int
    text: str
    completed: bool
    due: datetime | None
    priority: str | None
    category: str | None
    repeat: Repeat | None
    last_completed_at: datetime | None
    order: int
    created_at: datetime
    updated_at: datetime | None = None


class TaskWithList(TaskOut):
    list_name: str


class ReorderRequest(CamelModel):
    ordered_ids: list[int]
    # Which recurrence class is being reordered; inferred from the first id when absent
    recurring: bool | None = None


# --- Push subscription schemas ---


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscriptionIn(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys

    @model_validator(mode="before")
    @classmethod
    def unwrap_subscription(cls, data):
        # Browsers' PushSubscription.toJSON() is often posted as {"subscription": {...}}
        if isinstance(data, dict) and isinstance(data.get("subscription"), dict):
            return data["subscription"]
        return data


class VapidOut(CamelModel):
    public_key: str
