"""
Todo lifecycle operations shared by the HTTP routers.

Every function is scoped to one owner. Records belonging to other users
behave exactly like missing ones and raise NotFoundError.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError, ValidationError
from .models import TodoEntity
from .repositories import ListQuery, Repository, parse_sort
from .schemas import SpecificDateTodoCreate, TodoCreate, TodoUpdate

logger = logging.getLogger(__name__)


def _plain(fields: Dict[str, Any]) -> Dict[str, Any]:
    # Stores keep recurrence as its plain string value.
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


def _not_found(todo_id: int) -> NotFoundError:
    return NotFoundError("Todo not found", detail={"id": todo_id})


# PUBLIC_INTERFACE
def create_todo(repo: Repository, owner_id: int, payload: TodoCreate) -> TodoEntity:
    fields = _plain(payload.model_dump())
    fields["owner_id"] = owner_id
    todo = repo.create(fields)
    logger.info("User %s created todo %s", owner_id, todo["id"])
    return todo


# PUBLIC_INTERFACE
def create_specific_date_todo(repo: Repository, owner_id: int, payload: SpecificDateTodoCreate) -> TodoEntity:
    """Create a one-off todo due on payload.specific_date."""
    return create_todo(
        repo,
        owner_id,
        TodoCreate(text=payload.text, completed=payload.completed, date=payload.specific_date),
    )


# PUBLIC_INTERFACE
def get_todo(repo: Repository, owner_id: int, todo_id: int) -> TodoEntity:
    todo = repo.get(todo_id, owner_id=owner_id)
    if todo is None:
        raise _not_found(todo_id)
    return todo


# PUBLIC_INTERFACE
def resolve_sort(sort: Optional[str], direction: Optional[str] = None) -> str:
    """
    Combine the sort field and an optional asc/desc override into a sort key.

    Unknown fields fall back to the display order. An explicit direction
    replaces any leading '-' on the field.
    """
    field, descending = parse_sort(sort)
    if direction:
        normalized = direction.strip().lower()
        if normalized not in {"asc", "desc"}:
            raise ValidationError("order must be 'asc' or 'desc'", detail={"field": "order"})
        descending = normalized == "desc"
    return f"-{field}" if descending else field


# PUBLIC_INTERFACE
def list_todos(repo: Repository, query: ListQuery) -> Tuple[List[TodoEntity], int]:
    return repo.list(query)


def _apply(repo: Repository, owner_id: int, todo_id: int, patch: Dict[str, Any]) -> TodoEntity:
    patch = _plain(patch)
    if "recurrence" in patch and patch["recurrence"] is None:
        # next_recurrence only has meaning while the todo recurs
        patch["next_recurrence"] = None
    updated = repo.update(todo_id, patch, owner_id=owner_id)
    if updated is None:
        raise _not_found(todo_id)
    logger.info("User %s updated todo %s (%s)", owner_id, todo_id, ", ".join(sorted(patch)))
    return updated


# PUBLIC_INTERFACE
def update_todo(repo: Repository, owner_id: int, todo_id: int, payload: TodoUpdate) -> TodoEntity:
    """
    Apply only the fields present in payload.

    Raises:
        NotFoundError: no such todo for this owner.
        ValidationError: the result would recur without a date.
    """
    return _apply(repo, owner_id, todo_id, payload.model_dump(exclude_unset=True))


# PUBLIC_INTERFACE
def replace_todo(repo: Repository, owner_id: int, todo_id: int, payload: TodoCreate) -> TodoEntity:
    """Full replacement: omitted fields are reset to their defaults."""
    return _apply(repo, owner_id, todo_id, payload.model_dump())


# PUBLIC_INTERFACE
def delete_todo(repo: Repository, owner_id: int, todo_id: int) -> None:
    if not repo.delete(todo_id, owner_id=owner_id):
        raise _not_found(todo_id)
    logger.info("User %s deleted todo %s", owner_id, todo_id)
