from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import ConflictError, ValidationError
from .models import MUTABLE_TODO_FIELDS, RECURRENCE_INTERVALS, RECURRENCE_KINDS, TodoEntity, UserEntity
from .settings import get_settings
from .utils import start_of_day, utcnow

logger = logging.getLogger(__name__)

SORT_FIELDS = frozenset({"order", "created_at", "updated_at"})
DEFAULT_SORT = "order"

TodoPatch = Mapping[str, Any]


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing todos.
    """
    owner_id: Optional[int] = None
    limit: int = 50
    offset: int = 0
    completed: Optional[bool] = None
    search: Optional[str] = None
    sort: str = DEFAULT_SORT  # allowed: order, created_at, updated_at; '-' prefix for descending


@dataclass(frozen=True)
class TodoFilter:
    """
    Criteria for Repository.find. Unset (None) criteria match everything.

    - has_recurrence: recurrence is / is not set
    - recurrence_due_at: next_recurrence is absent or <= this instant
    - date_before: date is set and strictly earlier than this instant
    """
    owner_id: Optional[int] = None
    completed: Optional[bool] = None
    has_recurrence: Optional[bool] = None
    is_recurring_instance: Optional[bool] = None
    recurrence_due_at: Optional[datetime] = None
    date_before: Optional[datetime] = None

    def matches(self, todo: TodoEntity) -> bool:
        if self.owner_id is not None and todo["owner_id"] != self.owner_id:
            return False
        if self.completed is not None and todo["completed"] != self.completed:
            return False
        if self.has_recurrence is not None and (todo["recurrence"] is not None) != self.has_recurrence:
            return False
        if (
            self.is_recurring_instance is not None
            and bool(todo["is_recurring_instance"]) != self.is_recurring_instance
        ):
            return False
        if self.recurrence_due_at is not None:
            nxt = todo["next_recurrence"]
            if nxt is not None and nxt > self.recurrence_due_at:
                return False
        if self.date_before is not None:
            # a missing date never compares as earlier than the cutoff
            if todo["date"] is None or not todo["date"] < self.date_before:
                return False
        return True


def parse_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """Split a sort spec like '-created_at' into (field, descending)."""
    key = (sort or DEFAULT_SORT).strip().lower()
    descending = key.startswith("-")
    field = key.lstrip("-")
    if field not in SORT_FIELDS:
        return DEFAULT_SORT, False
    return field, descending


def validate_new_todo(fields: Mapping[str, Any]) -> None:
    """
    Enforce the invariants every stored todo must satisfy on creation.

    Raises:
        ValidationError: text/owner missing or invalid, unknown recurrence kind,
            or recurrence set without a date.
    """
    text = fields.get("text")
    if not isinstance(text, str) or not (1 <= len(text.strip()) <= 500):
        raise ValidationError("text must be a string of 1 to 500 characters", detail={"field": "text"})
    if fields.get("owner_id") is None:
        raise ValidationError("owner_id is required", detail={"field": "owner_id"})
    validate_recurrence(fields.get("recurrence"), fields.get("date"))


def validate_recurrence(recurrence: Optional[str], date: Optional[datetime]) -> None:
    if recurrence is None:
        return
    if recurrence not in RECURRENCE_KINDS:
        raise ValidationError(
            f"recurrence must be one of {', '.join(RECURRENCE_KINDS)}", detail={"field": "recurrence"}
        )
    if date is None:
        raise ValidationError("date is required when recurrence is set", detail={"field": "date"})
    try:
        # the generator needs both the first instance and the pointer after it
        start_of_day(date) + 2 * RECURRENCE_INTERVALS[recurrence]
    except OverflowError as e:
        raise ValidationError(
            "date is too late for a recurring todo", detail={"field": "date"}
        ) from e


def check_patch(patch: TodoPatch) -> None:
    unknown = set(patch) - MUTABLE_TODO_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}", detail={"fields": sorted(unknown)}
        )


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for todo storage backends."""

    @abstractmethod
    def create(self, fields: Mapping[str, Any]) -> TodoEntity:
        """Create and return a new TodoEntity. Raises ValidationError on invalid fields."""

    @abstractmethod
    def get(self, todo_id: int, owner_id: Optional[int] = None) -> Optional[TodoEntity]:
        """Return a TodoEntity by id (restricted to owner_id when given), or None if not found."""

    @abstractmethod
    def find(self, criteria: Optional[TodoFilter] = None) -> List[TodoEntity]:
        """Return every TodoEntity matching criteria, ordered by id."""

    @abstractmethod
    def update(
        self, todo_id: int, patch: TodoPatch, owner_id: Optional[int] = None
    ) -> Optional[TodoEntity]:
        """Apply patch to an existing TodoEntity. Return the updated entity or None if not found."""

    @abstractmethod
    def delete(self, todo_id: int, owner_id: Optional[int] = None) -> bool:
        """Delete a TodoEntity by id. Return True if deleted, False if not found."""

    @abstractmethod
    def count_by_owner(self, owner_id: int) -> int:
        """Return the number of todos owned by owner_id."""

    @abstractmethod
    def bulk_update(self, updates: Sequence[Tuple[int, TodoPatch]]) -> None:
        """Apply a patch to each listed todo id. Ids that no longer exist are skipped."""

    @abstractmethod
    def transaction(self) -> Any:
        """
        Context manager grouping writes: they are all kept when the block exits
        normally and all discarded when it raises.
        """

    @abstractmethod
    def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        """
        Return a slice of TodoEntities and total count matching filters.
        - Restrict to one owner
        - Supports limit/offset
        - Filter by completed
        - Substring search on text (case-insensitive)
        - Sorting by order/created_at/updated_at (asc/desc)
        """


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, TodoEntity] = {}
        self._next_id = 1

    def _now(self) -> datetime:
        return utcnow()

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    def _write(self, todo_id: int, patch: TodoPatch) -> Optional[TodoEntity]:
        """Single-record write shared by update and bulk_update."""
        existing = self._items.get(todo_id)
        if existing is None:
            return None
        updated = existing.copy()
        updated.update(patch)  # type: ignore[typeddict-item]
        updated["updated_at"] = self._now()
        self._items[todo_id] = updated
        return updated

    def create(self, fields: Mapping[str, Any]) -> TodoEntity:
        validate_new_todo(fields)
        now = self._now()
        with self._lock:
            entity: TodoEntity = {
                "id": self._allocate_id(),
                "text": fields["text"],
                "completed": bool(fields.get("completed", False)),
                "owner_id": fields["owner_id"],
                "date": fields.get("date"),
                "recurrence": fields.get("recurrence"),
                "next_recurrence": fields.get("next_recurrence"),
                "original_todo_id": fields.get("original_todo_id"),
                "is_recurring_instance": bool(fields.get("is_recurring_instance", False)),
                "order": int(fields.get("order", 0) or 0),
                "created_at": now,
                "updated_at": now,
            }
            self._items[entity["id"]] = entity
            return entity.copy()

    def get(self, todo_id: int, owner_id: Optional[int] = None) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            if item is None or (owner_id is not None and item["owner_id"] != owner_id):
                return None
            return item.copy()

    def find(self, criteria: Optional[TodoFilter] = None) -> List[TodoEntity]:
        f = criteria or TodoFilter()
        with self._lock:
            return [t.copy() for _, t in sorted(self._items.items()) if f.matches(t)]

    def update(
        self, todo_id: int, patch: TodoPatch, owner_id: Optional[int] = None
    ) -> Optional[TodoEntity]:
        check_patch(patch)
        with self._lock:
            current = self.get(todo_id, owner_id)
            if current is None:
                return None
            if "recurrence" in patch or "date" in patch:
                validate_recurrence(
                    patch.get("recurrence", current["recurrence"]), patch.get("date", current["date"])
                )
            updated = self._write(todo_id, patch)
            return None if updated is None else updated.copy()

    def delete(self, todo_id: int, owner_id: Optional[int] = None) -> bool:
        with self._lock:
            if self.get(todo_id, owner_id) is None:
                return False
            return self._items.pop(todo_id, None) is not None

    def count_by_owner(self, owner_id: int) -> int:
        with self._lock:
            return sum(1 for t in self._items.values() if t["owner_id"] == owner_id)

    def bulk_update(self, updates: Sequence[Tuple[int, TodoPatch]]) -> None:
        for _, patch in updates:
            check_patch(patch)
        with self.transaction():
            for todo_id, patch in updates:
                self._write(todo_id, patch)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryRepository"]:
        # The lock is re-entrant, so nested transactions join the outer one.
        with self._lock:
            snapshot = {k: v.copy() for k, v in self._items.items()}
            next_id = self._next_id
            try:
                yield self
            except BaseException:
                self._items = snapshot
                self._next_id = next_id
                logger.debug("In-memory transaction rolled back")
                raise

    def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: Iterable[TodoEntity] = self._items.values()

            if q.owner_id is not None:
                items = [t for t in items if t["owner_id"] == q.owner_id]

            if q.completed is not None:
                items = [t for t in items if t["completed"] == q.completed]

            if q.search:
                s = q.search.lower()
                items = [t for t in items if s in t["text"].lower()]

            items = list(items)
            total = len(items)

            field, reverse = parse_sort(q.sort)
            items_sorted = sorted(items, key=lambda t: (t[field], t["id"]), reverse=reverse)  # type: ignore[literal-required]

            start = max(q.offset, 0)
            end = start + max(q.limit, 0)
            page = items_sorted[start:end]

            # Return copies to avoid external mutation
            return [t.copy() for t in page], total


# PUBLIC_INTERFACE
class UserRepository(ABC):
    """Abstract repository contract for user accounts."""

    @abstractmethod
    def create(self, email: str, password_hash: str) -> UserEntity:
        """Create a user. Raises ConflictError if the email is already registered."""

    @abstractmethod
    def get(self, user_id: int) -> Optional[UserEntity]:
        """Return a user by id, or None."""

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[UserEntity]:
        """Return a user by (normalized, lower-case) email, or None."""


class InMemoryUserRepository(UserRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._users: Dict[int, UserEntity] = {}
        self._next_id = 1

    def create(self, email: str, password_hash: str) -> UserEntity:
        email = email.strip().lower()
        now = utcnow()
        with self._lock:
            if any(u["email"] == email for u in self._users.values()):
                raise ConflictError("Email already exists")
            user: UserEntity = {
                "id": self._next_id,
                "email": email,
                "password_hash": password_hash,
                "created_at": now,
                "updated_at": now,
            }
            self._next_id += 1
            self._users[user["id"]] = user
            return user.copy()

    def get(self, user_id: int) -> Optional[UserEntity]:
        with self._lock:
            user = self._users.get(user_id)
            return None if user is None else user.copy()

    def get_by_email(self, email: str) -> Optional[UserEntity]:
        email = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user["email"] == email:
                    return user.copy()
            return None


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Return the process-wide todo repository configured in settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository at SQLITE_DB_PATH

    Cached so that requests and background workers share one store; call
    get_repository.cache_clear() to rebuild it after changing settings.
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(settings.sqlite_db_path)
    return InMemoryRepository()


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_user_repository() -> UserRepository:
    """Return the process-wide user repository for the configured backend."""
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteUserRepository

        return SQLiteUserRepository(settings.sqlite_db_path)
    return InMemoryUserRepository()
