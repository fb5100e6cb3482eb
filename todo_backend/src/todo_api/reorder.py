from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from .errors import TransactionError
from .models import TodoEntity
from .repositories import ListQuery, Repository, TodoFilter

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def reorder_todos(repo: Repository, owner_id: int, ordered_ids: Sequence[int]) -> List[TodoEntity]:
    """
    Reassign order for every todo owned by owner_id to match ordered_ids.

    - A todo's new order is the 0-based index of its id in ordered_ids; when an
      id appears twice its last position wins.
    - Owned todos missing from ordered_ids get order 0.
    - Ids of todos the owner does not have are ignored.

    All writes happen in one store transaction. If any of them fails nothing is
    changed and TransactionError is raised with the original error as its cause.

    Returns:
        The owner's todos sorted by their new order.
    """
    positions: Dict[int, int] = {todo_id: index for index, todo_id in enumerate(ordered_ids)}
    try:
        with repo.transaction():
            owned = repo.find(TodoFilter(owner_id=owner_id))
            repo.bulk_update([(t["id"], {"order": positions.get(t["id"], 0)}) for t in owned])
    except TransactionError:
        raise
    except Exception as e:
        logger.error("Reorder for user %s rolled back: %s", owner_id, e)
        raise TransactionError("Reorder failed; no changes were applied") from e

    logger.info("Reordered %d todo(s) for user %s", len(owned), owner_id)
    items, _ = repo.list(ListQuery(owner_id=owner_id, limit=len(owned), sort="order"))
    return items
