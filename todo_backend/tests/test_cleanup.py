from datetime import datetime, timezone

from todo_api.cleanup import cutoff_for, sweep_completed_todos
from todo_api.repositories import InMemoryRepository

UTC = timezone.utc
NOW = datetime(2024, 1, 5, 3, 0, tzinfo=UTC)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def make(repo, **fields):
    base = {"text": "done", "owner_id": 1, "completed": True, "date": utc(2024, 1, 1)}
    base.update(fields)
    return repo.create(base)["id"]


def test_cutoff_is_start_of_previous_utc_day():
    assert cutoff_for(NOW) == utc(2024, 1, 4)
    assert cutoff_for(utc(2024, 3, 1, 23, 59)) == utc(2024, 2, 29)


def test_sweeps_old_completed_one_off_todo():
    repo = InMemoryRepository()
    old = make(repo)
    recent = make(repo, date=utc(2024, 1, 4, 12))

    assert sweep_completed_todos(repo, now=NOW) == 1
    assert repo.get(old) is None
    assert repo.get(recent) is not None


def test_cutoff_is_exclusive():
    repo = InMemoryRepository()
    at_cutoff = make(repo, date=utc(2024, 1, 4))
    just_before = make(repo, date=datetime(2024, 1, 3, 23, 59, 59, tzinfo=UTC))

    sweep_completed_todos(repo, now=NOW)

    assert repo.get(at_cutoff) is not None
    assert repo.get(just_before) is None


def test_keeps_everything_outside_the_criteria():
    repo = InMemoryRepository()
    kept = [
        make(repo, completed=False),
        make(repo, date=None),
        make(repo, recurrence="daily"),
        make(repo, is_recurring_instance=True, original_todo_id=99),
    ]

    assert sweep_completed_todos(repo, now=NOW) == 0
    assert all(repo.get(tid) is not None for tid in kept)


def test_delete_failure_is_skipped():
    class StubbornRepository(InMemoryRepository):
        def delete(self, todo_id, owner_id=None):
            if todo_id == self.protected:
                raise RuntimeError("locked")
            return super().delete(todo_id, owner_id)

    repo = StubbornRepository()
    repo.protected = make(repo)
    other = make(repo)

    assert sweep_completed_todos(repo, now=NOW) == 1
    assert repo.get(repo.protected) is not None
    assert repo.get(other) is None
