from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, TypedDict

RECURRENCE_INTERVALS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}
RECURRENCE_KINDS = tuple(RECURRENCE_INTERVALS)


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    Storage-level representation of a Todo item shared by every backend.

    Fields:
    - id: Unique integer identifier assigned by the store
    - text: Todo text (1..500 chars, trimmed on input via schemas)
    - completed: Boolean completion flag
    - owner_id: Id of the owning user, never changed after creation
    - date: Optional due/anchor datetime (UTC); required when recurrence is set
    - recurrence: 'daily', 'weekly' or None for one-off todos
    - next_recurrence: When the recurrence generator should next spawn an instance
    - original_todo_id: Source todo of a generated instance, None otherwise
    - is_recurring_instance: True only for todos created by the generator
    - order: Display position relative to the owner's other todos
    - created_at: UTC creation timestamp
    - updated_at: UTC last update timestamp
    """

    id: int
    text: str
    completed: bool
    owner_id: int
    date: Optional[datetime]
    recurrence: Optional[str]
    next_recurrence: Optional[datetime]
    original_todo_id: Optional[int]
    is_recurring_instance: bool
    order: int
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class UserEntity(TypedDict):
    """A registered account. password_hash is a bcrypt hash and never leaves the service."""

    id: int
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime


# Fields a caller may change through Repository.update / bulk_update.
MUTABLE_TODO_FIELDS = frozenset(
    {"text", "completed", "date", "recurrence", "next_recurrence", "order"}
)
