from __future__ import annotations

import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generator, List, Mapping, Optional, Sequence, Tuple

from .errors import ConflictError, StoreUnavailable
from .models import TodoEntity, UserEntity
from .repositories import (
    ListQuery,
    Repository,
    TodoFilter,
    TodoPatch,
    UserRepository,
    check_patch,
    parse_sort,
    validate_new_todo,
    validate_recurrence,
)
from .utils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Cols:
    table: str = "todos"
    id: str = "id"
    text: str = "text"
    completed: str = "completed"
    owner_id: str = "owner_id"
    date: str = "date"
    recurrence: str = "recurrence"
    next_recurrence: str = "next_recurrence"
    original_todo_id: str = "original_todo_id"
    is_recurring_instance: str = "is_recurring_instance"
    order: str = "sort_order"  # ORDER is a reserved word
    created_at: str = "created_at"
    updated_at: str = "updated_at"


@dataclass(frozen=True)
class _UserCols:
    table: str = "users"
    id: str = "id"
    email: str = "email"
    password_hash: str = "password_hash"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()
_USER_COLS = _UserCols()

_DATETIME_FIELDS = frozenset({"date", "next_recurrence", "created_at", "updated_at"})
_BOOL_FIELDS = frozenset({"completed", "is_recurring_instance"})


def _dt_to_db(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width UTC ISO strings compare chronologically as text.
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _dt_from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


def _value_to_db(field: str, value: Any) -> Any:
    if field in _DATETIME_FIELDS:
        return _dt_to_db(value)
    if field in _BOOL_FIELDS:
        return 1 if value else 0
    return value


def _escape_like(term: str) -> str:
    # match % and _ literally, as the in-memory substring search does
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _SQLiteStore(ABC):
    """
    Connection handling shared by the sqlite repositories.

    Each call opens its own connection and commits on success. Inside
    transaction() the calling thread reuses one connection, and nothing is
    committed until the block exits without raising.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    @abstractmethod
    def _init_db(self) -> None:
        """Create the tables this store owns."""

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        active: Optional[sqlite3.Connection] = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open database at {self._db_path}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            logger.error("SQLite operation failed: %s", e)
            raise StoreUnavailable("Database operation failed") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[Any, None, None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested transaction joins the outer one
            yield self
            return
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            self._local.conn = conn
            try:
                yield self
            except BaseException:
                conn.rollback()
                logger.debug("SQLite transaction rolled back")
                raise
            finally:
                self._local.conn = None


class SQLiteRepository(_SQLiteStore, Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.
    """

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.text} TEXT NOT NULL,
                    {_COLS.completed} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.owner_id} INTEGER NOT NULL,
                    {_COLS.date} TEXT NULL,
                    {_COLS.recurrence} TEXT NULL,
                    {_COLS.next_recurrence} TEXT NULL,
                    {_COLS.original_todo_id} INTEGER NULL,
                    {_COLS.is_recurring_instance} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.order} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_owner ON {_COLS.table}({_COLS.owner_id})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_date ON {_COLS.table}({_COLS.date})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_order ON {_COLS.table}({_COLS.order})"
            )

    def _row_to_entity(self, row: sqlite3.Row) -> TodoEntity:
        return {
            "id": int(row[_COLS.id]),
            "text": str(row[_COLS.text]),
            "completed": bool(row[_COLS.completed]),
            "owner_id": int(row[_COLS.owner_id]),
            "date": _dt_from_db(row[_COLS.date]),
            "recurrence": row[_COLS.recurrence],
            "next_recurrence": _dt_from_db(row[_COLS.next_recurrence]),
            "original_todo_id": row[_COLS.original_todo_id],
            "is_recurring_instance": bool(row[_COLS.is_recurring_instance]),
            "order": int(row[_COLS.order]),
            "created_at": _dt_from_db(row[_COLS.created_at]),  # type: ignore
            "updated_at": _dt_from_db(row[_COLS.updated_at]),  # type: ignore
        }

    def _fetch(self, conn: sqlite3.Connection, todo_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,)
        ).fetchone()

    def _set_clause(self, patch: TodoPatch) -> Tuple[str, List[Any]]:
        assignments = [f"{getattr(_COLS, field)} = ?" for field in patch]
        params = [_value_to_db(field, value) for field, value in patch.items()]
        assignments.append(f"{_COLS.updated_at} = ?")
        params.append(_dt_to_db(utcnow()))
        return ", ".join(assignments), params

    def create(self, fields: Mapping[str, Any]) -> TodoEntity:
        validate_new_todo(fields)
        now = _dt_to_db(utcnow())
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.text}, {_COLS.completed}, {_COLS.owner_id},
                    {_COLS.date}, {_COLS.recurrence}, {_COLS.next_recurrence},
                    {_COLS.original_todo_id}, {_COLS.is_recurring_instance}, {_COLS.order},
                    {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    fields["text"],
                    1 if fields.get("completed") else 0,
                    fields["owner_id"],
                    _dt_to_db(fields.get("date")),
                    fields.get("recurrence"),
                    _dt_to_db(fields.get("next_recurrence")),
                    fields.get("original_todo_id"),
                    1 if fields.get("is_recurring_instance") else 0,
                    int(fields.get("order", 0) or 0),
                    now,
                    now,
                ),
            )
            row = self._fetch(conn, cur.lastrowid)
            assert row is not None
            return self._row_to_entity(row)

    def get(self, todo_id: int, owner_id: Optional[int] = None) -> Optional[TodoEntity]:
        with self._conn() as conn:
            row = self._fetch(conn, todo_id)
            if not row or (owner_id is not None and row[_COLS.owner_id] != owner_id):
                return None
            return self._row_to_entity(row)

    def find(self, criteria: Optional[TodoFilter] = None) -> List[TodoEntity]:
        f = criteria or TodoFilter()
        clauses: List[str] = []
        params: List[Any] = []

        if f.owner_id is not None:
            clauses.append(f"{_COLS.owner_id} = ?")
            params.append(f.owner_id)
        if f.completed is not None:
            clauses.append(f"{_COLS.completed} = ?")
            params.append(1 if f.completed else 0)
        if f.has_recurrence is not None:
            clauses.append(f"{_COLS.recurrence} IS {'NOT NULL' if f.has_recurrence else 'NULL'}")
        if f.is_recurring_instance is not None:
            clauses.append(f"{_COLS.is_recurring_instance} = ?")
            params.append(1 if f.is_recurring_instance else 0)
        if f.recurrence_due_at is not None:
            clauses.append(f"({_COLS.next_recurrence} IS NULL OR {_COLS.next_recurrence} <= ?)")
            params.append(_dt_to_db(f.recurrence_due_at))
        if f.date_before is not None:
            clauses.append(f"({_COLS.date} IS NOT NULL AND {_COLS.date} < ?)")
            params.append(_dt_to_db(f.date_before))

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_COLS.table} {where_sql} ORDER BY {_COLS.id} ASC", params
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def update(
        self, todo_id: int, patch: TodoPatch, owner_id: Optional[int] = None
    ) -> Optional[TodoEntity]:
        check_patch(patch)
        with self._conn() as conn:
            row = self._fetch(conn, todo_id)
            if not row or (owner_id is not None and row[_COLS.owner_id] != owner_id):
                return None
            current = self._row_to_entity(row)
            if "recurrence" in patch or "date" in patch:
                validate_recurrence(
                    patch.get("recurrence", current["recurrence"]), patch.get("date", current["date"])
                )
            set_sql, params = self._set_clause(patch)
            conn.execute(
                f"UPDATE {_COLS.table} SET {set_sql} WHERE {_COLS.id} = ?", [*params, todo_id]
            )
            row2 = self._fetch(conn, todo_id)
            assert row2 is not None
            return self._row_to_entity(row2)

    def delete(self, todo_id: int, owner_id: Optional[int] = None) -> bool:
        sql = f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?"
        params: List[Any] = [todo_id]
        if owner_id is not None:
            sql += f" AND {_COLS.owner_id} = ?"
            params.append(owner_id)
        with self._conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount > 0

    def count_by_owner(self, owner_id: int) -> int:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {_COLS.table} WHERE {_COLS.owner_id} = ?", (owner_id,)
            ).fetchone()
            return int(row["cnt"]) if row else 0

    def bulk_update(self, updates: Sequence[Tuple[int, TodoPatch]]) -> None:
        for _, patch in updates:
            check_patch(patch)
        with self.transaction():
            with self._conn() as conn:
                for todo_id, patch in updates:
                    set_sql, params = self._set_clause(patch)
                    conn.execute(
                        f"UPDATE {_COLS.table} SET {set_sql} WHERE {_COLS.id} = ?",
                        [*params, todo_id],
                    )

    def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        clauses = []
        params: list = []

        if q.owner_id is not None:
            clauses.append(f"{_COLS.owner_id} = ?")
            params.append(q.owner_id)

        if q.completed is not None:
            clauses.append(f"{_COLS.completed} = ?")
            params.append(1 if q.completed else 0)

        if q.search:
            # LIKE is case-insensitive for ASCII in SQLite
            clauses.append(f"{_COLS.text} LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(q.search)}%")

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        field, descending = parse_sort(q.sort)
        direction = "DESC" if descending else "ASC"
        order_sql = f"ORDER BY {getattr(_COLS, field)} {direction}, {_COLS.id} {direction}"

        limit = max(q.limit, 0)
        offset = max(q.offset, 0)

        with self._conn() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) as cnt FROM {_COLS.table} {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                {where_sql}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total


class SQLiteUserRepository(_SQLiteStore, UserRepository):
    """User accounts stored in the same sqlite database as the todos."""

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_USER_COLS.table} (
                    {_USER_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_USER_COLS.email} TEXT NOT NULL UNIQUE,
                    {_USER_COLS.password_hash} TEXT NOT NULL,
                    {_USER_COLS.created_at} TEXT NOT NULL,
                    {_USER_COLS.updated_at} TEXT NOT NULL
                )
                """
            )

    def _row_to_entity(self, row: sqlite3.Row) -> UserEntity:
        return {
            "id": int(row[_USER_COLS.id]),
            "email": str(row[_USER_COLS.email]),
            "password_hash": str(row[_USER_COLS.password_hash]),
            "created_at": _dt_from_db(row[_USER_COLS.created_at]),  # type: ignore
            "updated_at": _dt_from_db(row[_USER_COLS.updated_at]),  # type: ignore
        }

    def _select_one(self, column: str, value: Any) -> Optional[UserEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_USER_COLS.table} WHERE {column} = ?", (value,)
            ).fetchone()
            return self._row_to_entity(row) if row else None

    def create(self, email: str, password_hash: str) -> UserEntity:
        email = email.strip().lower()
        now = _dt_to_db(utcnow())
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    f"""
                    INSERT INTO {_USER_COLS.table} ({_USER_COLS.email}, {_USER_COLS.password_hash},
                        {_USER_COLS.created_at}, {_USER_COLS.updated_at})
                    VALUES (?, ?, ?, ?)
                    """,
                    (email, password_hash, now, now),
                )
                new_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("Email already exists") from e
        user = self.get(int(new_id))  # type: ignore[arg-type]
        assert user is not None
        return user

    def get(self, user_id: int) -> Optional[UserEntity]:
        return self._select_one(_USER_COLS.id, user_id)

    def get_by_email(self, email: str) -> Optional[UserEntity]:
        return self._select_one(_USER_COLS.email, email.strip().lower())
