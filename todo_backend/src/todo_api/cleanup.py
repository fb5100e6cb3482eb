from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .repositories import Repository, TodoFilter
from .utils import start_of_day, utcnow

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def cutoff_for(now: datetime) -> datetime:
    """Return UTC midnight at the start of the calendar day before now."""
    return start_of_day(now) - timedelta(days=1)


# PUBLIC_INTERFACE
def sweep_completed_todos(repo: Repository, now: Optional[datetime] = None) -> int:
    """
    Permanently delete stale completed one-off todos.

    A todo is swept when it has no recurrence, is completed, was not produced by
    the recurrence generator, and its date is strictly before cutoff_for(now).
    Todos without a date are kept. A todo that fails to delete is logged and
    skipped.

    Returns:
        Number of todos deleted.
    """
    now = now or utcnow()
    cutoff = cutoff_for(now)
    stale = repo.find(
        TodoFilter(
            has_recurrence=False,
            completed=True,
            is_recurring_instance=False,
            date_before=cutoff,
        )
    )

    deleted = 0
    for todo in stale:
        try:
            if repo.delete(todo["id"]):
                deleted += 1
        except Exception:
            logger.exception("Failed to delete completed todo %s", todo["id"])

    logger.info("Cleanup before %s: %d of %d todo(s) deleted", cutoff.isoformat(), deleted, len(stale))
    return deleted
