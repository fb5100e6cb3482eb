"""
Recurrence calculation and generation of recurring todo instances.

A recurring todo (the "source") carries a recurrence kind and an anchor date.
Each generator run creates one instance per due source and moves the source's
next_recurrence pointer forward. Instances copy the source's text and
recurrence but are flagged is_recurring_instance and never spawn themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .errors import InvalidRecurrenceKind, ValidationError
from .models import RECURRENCE_INTERVALS, TodoEntity
from .repositories import Repository, TodoFilter
from .utils import start_of_day, utcnow

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def next_occurrence(kind: str, reference: datetime) -> datetime:
    """
    Return the occurrence following reference for the given recurrence kind.

    The reference is moved to midnight UTC of its own day before the interval
    is added, so every occurrence lands on a day boundary no matter when the
    generator happens to run.

    Raises:
        InvalidRecurrenceKind: kind is not 'daily' or 'weekly'.
        ValidationError: the occurrence falls past the last representable date.
    """
    value = kind.value if isinstance(kind, Enum) else kind
    interval = RECURRENCE_INTERVALS.get(value) if isinstance(value, str) else None
    if interval is None:
        raise InvalidRecurrenceKind(kind)
    try:
        return start_of_day(reference) + interval
    except OverflowError as e:
        raise ValidationError(
            "No next occurrence: date is out of range", detail={"reference": str(reference)}
        ) from e


@dataclass
class GenerationReport:
    """Outcome of one generator run."""

    created_ids: List[int] = field(default_factory=list)
    failed_source_ids: List[int] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.created_ids) + len(self.failed_source_ids)


def _occurrence_due(source: TodoEntity, now: datetime) -> datetime:
    if source["next_recurrence"] is not None:
        # A later run: the occurrence that came due is the pointer itself.
        return start_of_day(source["next_recurrence"])
    return next_occurrence(source["recurrence"], source["date"] or now)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
def spawn_instance(repo: Repository, source: TodoEntity, now: Optional[datetime] = None) -> TodoEntity:
    """
    Create the next instance of one source todo and advance its next_recurrence.

    The pointer is advanced only after the instance exists: a failure in
    between leaves the source due, so the next run repeats the instance
    rather than skipping it. The source is not locked between the two writes.
    """
    now = now or utcnow()
    kind = source["recurrence"]
    new_date = _occurrence_due(source, now)
    # computed up front so an exhausted series fails before anything is written
    pointer = next_occurrence(kind, new_date)  # type: ignore[arg-type]

    instance = repo.create(
        {
            "text": source["text"],
            "owner_id": source["owner_id"],
            "date": new_date,
            "recurrence": kind,
            "original_todo_id": source["id"],
            "is_recurring_instance": True,
            "order": repo.count_by_owner(source["owner_id"]),
        }
    )
    repo.update(source["id"], {"next_recurrence": pointer})
    return instance


# PUBLIC_INTERFACE
def generate_recurring_instances(repo: Repository, now: Optional[datetime] = None) -> GenerationReport:
    """
    Materialize every recurring todo whose next occurrence is due.

    Sources are user-authored todos with a recurrence whose next_recurrence is
    unset or not after now. Each source is handled on its own: a failure is
    logged and the run moves on to the next source.
    """
    now = now or utcnow()
    report = GenerationReport()
    sources = repo.find(
        TodoFilter(has_recurrence=True, is_recurring_instance=False, recurrence_due_at=now)
    )
    logger.info("Recurrence run at %s: %d due source(s)", now.isoformat(), len(sources))

    for source in sources:
        try:
            instance = spawn_instance(repo, source, now)
        except Exception:
            logger.exception("Failed to generate instance for todo %s", source["id"])
            report.failed_source_ids.append(source["id"])
            continue
        report.created_ids.append(instance["id"])
        logger.debug(
            "Generated todo %s from %s dated %s", instance["id"], source["id"], instance["date"]
        )

    logger.info(
        "Recurrence run finished: %d created, %d failed",
        len(report.created_ids),
        len(report.failed_source_ids),
    )
    return report
