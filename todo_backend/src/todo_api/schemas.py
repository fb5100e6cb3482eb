from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .utils import as_utc

# Shared type for incoming dates which can be a date, datetime, or ISO8601 string
DateInput = Union[date, datetime, str]

TEXT_MAX_LENGTH = 500


# PUBLIC_INTERFACE
class Recurrence(str, Enum):
    """Supported recurrence kinds."""

    daily = "daily"
    weekly = "weekly"


def _to_utc(value: datetime) -> datetime:
    try:
        return as_utc(value)
    except OverflowError as e:
        # e.g. 0001-01-01T00:00:00+05:00 has no UTC equivalent
        raise ValueError("date is out of range") from e


def _parse_date(value: Optional[DateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize date input into an aware UTC datetime.
    - Strings are parsed as ISO8601 datetimes, falling back to plain dates at 00:00.
    - A date (not datetime) becomes a datetime at 00:00 UTC.
    - Naive datetimes are taken as UTC; aware ones are converted to UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return _to_utc(value)

    if isinstance(value, date):
        return _to_utc(datetime(value.year, value.month, value.day))

    if isinstance(value, str):
        s = value.strip()
        # datetime.fromisoformat does not accept a trailing 'Z' before Python 3.11
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    "Invalid date format. Use ISO8601 date or datetime string "
                    "(e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e
            return _to_utc(datetime(d.year, d.month, d.day))
        return _to_utc(parsed)

    raise ValueError("Invalid type for date; expected date, datetime, or ISO8601 string.")


def _clean_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= TEXT_MAX_LENGTH):
        raise ValueError(f"text length must be between 1 and {TEXT_MAX_LENGTH} characters")
    return s


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.

    A recurring todo (recurrence set) must carry a date: it anchors the series.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text": "Water the plants",
                "completed": False,
                "date": "2025-02-01",
                "recurrence": "weekly",
            }
        }
    )

    text: str = Field(..., description="Todo text", min_length=1, max_length=TEXT_MAX_LENGTH)
    completed: bool = Field(default=False, description="Completion status flag")
    date: Optional[datetime] = Field(
        default=None,
        description="Due/anchor date. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC",
    )
    recurrence: Optional[Recurrence] = Field(default=None, description="'daily', 'weekly' or null")
    order: int = Field(default=0, ge=0, description="Display position within the owner's list")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Strip whitespace and enforce 1..500 length."""
        return _clean_text(v)  # type: ignore[return-value]

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_date(v)

    @model_validator(mode="after")
    def require_date_for_recurrence(self) -> "TodoCreate":
        if self.recurrence is not None and self.date is None:
            raise ValueError("date is required when recurrence is set")
        return self


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated, and at least one
    must be provided. Whether a recurring todo keeps a date is checked against the
    stored record, since the date may not be part of the patch.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text": "Water the plants and the garden",
                "completed": True,
            }
        }
    )

    text: Optional[str] = Field(default=None, min_length=1, max_length=TEXT_MAX_LENGTH)
    completed: Optional[bool] = Field(default=None)
    date: Optional[datetime] = Field(default=None)
    recurrence: Optional[Recurrence] = Field(default=None)
    order: Optional[int] = Field(default=None, ge=0)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: Optional[str]) -> Optional[str]:
        return _clean_text(v)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_date(v)

    @model_validator(mode="after")
    def require_some_field(self) -> "TodoUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one valid field must be provided")
        if self.text is None and "text" in self.model_fields_set:
            raise ValueError("text cannot be null")
        if self.completed is None and "completed" in self.model_fields_set:
            raise ValueError("completed cannot be null")
        if self.order is None and "order" in self.model_fields_set:
            raise ValueError("order cannot be null")
        return self


# PUBLIC_INTERFACE
class SpecificDateTodoCreate(BaseModel):
    """Shortcut schema for a one-off todo due on a specific date."""

    text: str = Field(..., min_length=1, max_length=TEXT_MAX_LENGTH)
    specific_date: datetime = Field(..., description="ISO8601 date or datetime the todo is due")
    completed: bool = Field(default=False)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _clean_text(v)  # type: ignore[return-value]

    @field_validator("specific_date", mode="before")
    @classmethod
    def parse_specific_date(cls, v: DateInput) -> Optional[datetime]:
        return _parse_date(v)


# PUBLIC_INTERFACE
class ReorderRequest(BaseModel):
    """Ids of the caller's todos in their new display order."""

    model_config = ConfigDict(json_schema_extra={"example": {"ids": [3, 1, 2]}})

    ids: List[int] = Field(..., description="Todo ids; position in the list becomes the todo's order")


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 12,
                "text": "Water the plants",
                "completed": False,
                "owner_id": 1,
                "date": "2025-02-08T00:00:00Z",
                "recurrence": "weekly",
                "next_recurrence": None,
                "original_todo_id": 4,
                "is_recurring_instance": True,
                "order": 3,
                "created_at": "2025-02-01T00:00:01.123456Z",
                "updated_at": "2025-02-01T00:00:01.123456Z",
            }
        }
    )

    id: int
    text: str
    completed: bool
    owner_id: int
    date: Optional[datetime] = None
    recurrence: Optional[Recurrence] = None
    next_recurrence: Optional[datetime] = None
    original_todo_id: Optional[int] = None
    is_recurring_instance: bool = False
    order: int = 0
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TodoPage(BaseModel):
    """One page of the caller's todos plus the size of the whole result."""

    items: List[TodoOut]
    total: int = Field(..., description="Todos matching the filters, ignoring limit/offset")
    limit: int
    offset: int


# PUBLIC_INTERFACE
class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, description="At least 6 characters")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


# PUBLIC_INTERFACE
class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """Public view of a user; the password hash is never serialized."""

    id: int
    email: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class AuthResponse(BaseModel):
    token: str = Field(..., description="Bearer token for the Authorization header")
    token_type: str = Field(default="bearer")
    user: UserOut
