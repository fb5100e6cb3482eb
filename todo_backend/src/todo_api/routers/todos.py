from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from .. import services
from ..auth import get_current_user_id
from ..reorder import reorder_todos
from ..repositories import ListQuery, Repository, get_repository
from ..schemas import ReorderRequest, SpecificDateTodoCreate, TodoCreate, TodoOut, TodoPage, TodoUpdate
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
    responses={401: {"description": "Missing or invalid bearer token"}},
)

# Largest id a sqlite INTEGER column can hold
MAX_TODO_ID = 2**63 - 1

_NOT_FOUND = {404: {"description": "No todo with this id for the current user"}}


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a todo for the current user. A recurring todo needs a date.",
    responses={422: {"description": "Invalid text, recurrence or date"}},
)
def create_todo(
    payload: TodoCreate,
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoOut:
    return TodoOut(**services.create_todo(repo, owner_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/specific-date",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo For A Date",
    description="Create a one-off todo due on the given specific_date.",
)
def create_specific_date_todo(
    payload: SpecificDateTodoCreate,
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoOut:
    return TodoOut(**services.create_specific_date_todo(repo, owner_id, payload))


# Declared before /{todo_id} so "reorder" is not parsed as an id.
# PUBLIC_INTERFACE
@router.patch(
    "/reorder",
    response_model=List[TodoOut],
    summary="Reorder Todos",
    description=(
        "Assign each of the caller's todos the position of its id in `ids` (0-based). "
        "Todos not listed get order 0; ids the caller does not own are ignored. "
        "The update is all-or-nothing."
    ),
    responses={500: {"description": "Reorder rolled back"}},
)
def reorder(
    payload: ReorderRequest,
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> List[TodoOut]:
    return [TodoOut(**t) for t in reorder_todos(repo, owner_id, payload.ids)]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TodoPage,
    summary="List Todos",
    description=(
        "Page through the current user's todos.\n\n"
        "- limit / offset: page window (limit 0..1000)\n"
        "- completed: only done or only open todos\n"
        "- q: case-insensitive substring of the text\n"
        "- sort: order (default), created_at or updated_at; prefix '-' for descending\n"
        "- order: asc or desc, overrides the direction given in sort"
    ),
    responses={422: {"description": "Invalid query parameters"}},
)
def list_todos(
    limit: int = Query(50, ge=0, le=1000),
    offset: int = Query(0, ge=0),
    completed: Optional[bool] = Query(None),
    q: Optional[str] = Query(None, description="Search text"),
    sort: Optional[str] = Query("order"),
    order: Optional[str] = Query(None, description="'asc' or 'desc'"),
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoPage:
    query = ListQuery(
        owner_id=owner_id,
        limit=limit,
        offset=offset,
        completed=completed,
        search=q.strip() if q else None,
        sort=services.resolve_sort(sort, order),
    )
    items, total = services.list_todos(repo, query)
    return TodoPage(**pagination_envelope([TodoOut(**t) for t in items], total, limit, offset))


# PUBLIC_INTERFACE
@router.get("/{todo_id}", response_model=TodoOut, summary="Get Todo", responses=_NOT_FOUND)
def get_todo(
    todo_id: int = Path(..., le=MAX_TODO_ID),
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoOut:
    return TodoOut(**services.get_todo(repo, owner_id, todo_id))


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Replace Todo",
    description="Overwrite every mutable field; omitted fields go back to their defaults.",
    responses=_NOT_FOUND,
)
def put_todo(
    payload: TodoCreate,
    todo_id: int = Path(..., le=MAX_TODO_ID),
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoOut:
    return TodoOut(**services.replace_todo(repo, owner_id, todo_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Change only the fields sent in the body. At least one field is required.",
    responses=_NOT_FOUND,
)
def patch_todo(
    payload: TodoUpdate,
    todo_id: int = Path(..., le=MAX_TODO_ID),
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> TodoOut:
    return TodoOut(**services.update_todo(repo, owner_id, todo_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    responses=_NOT_FOUND,
)
def delete_todo(
    todo_id: int = Path(..., le=MAX_TODO_ID),
    owner_id: int = Depends(get_current_user_id),
    repo: Repository = Depends(get_repository),
) -> None:
    services.delete_todo(repo, owner_id, todo_id)
