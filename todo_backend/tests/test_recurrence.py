from datetime import datetime, timedelta, timezone

import pytest

from todo_api.errors import InvalidRecurrenceKind, ValidationError
from todo_api.recurrence import generate_recurring_instances, next_occurrence
from todo_api.repositories import InMemoryRepository, TodoFilter
from todo_api.schemas import Recurrence

UTC = timezone.utc

REFERENCE_DATES = [
    datetime(2024, 1, 1, tzinfo=UTC),
    datetime(2024, 1, 1, 23, 59, 59, 999999, tzinfo=UTC),
    datetime(2024, 2, 28, 12, 0, tzinfo=UTC),
    datetime(2024, 12, 31, 18, 30, tzinfo=UTC),
    datetime(2025, 6, 15, 3, 15, tzinfo=timezone(timedelta(hours=9))),
]


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestNextOccurrence:
    @pytest.mark.parametrize("kind,days", [("daily", 1), ("weekly", 7)])
    def test_is_midnight_aligned_and_offset(self, kind, days):
        for ref in REFERENCE_DATES:
            result = next_occurrence(kind, ref)
            midnight = ref.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
            assert result > ref
            assert result == midnight + timedelta(days=days)
            assert result.tzinfo is not None and result.utcoffset() == timedelta(0)
            assert (result.hour, result.minute, result.second, result.microsecond) == (0, 0, 0, 0)

    def test_daily_crosses_month_and_year(self):
        assert next_occurrence("daily", utc(2024, 2, 29, 10)) == utc(2024, 3, 1)
        assert next_occurrence("daily", utc(2024, 12, 31, 10)) == utc(2025, 1, 1)

    def test_weekly(self):
        assert next_occurrence("weekly", utc(2024, 1, 1, 8, 30)) == utc(2024, 1, 8)

    def test_naive_reference_is_taken_as_utc(self):
        assert next_occurrence("daily", datetime(2024, 1, 1, 22, 0)) == utc(2024, 1, 2)

    def test_offset_reference_is_normalized_to_utc_first(self):
        # 23:30 at UTC-5 is 04:30 UTC on the next day
        ref = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert next_occurrence("daily", ref) == utc(2024, 1, 3)

    def test_accepts_enum_kind(self):
        assert next_occurrence(Recurrence.weekly, utc(2024, 1, 1)) == utc(2024, 1, 8)

    @pytest.mark.parametrize("kind,ref", [("daily", utc(9999, 12, 31)), ("weekly", utc(9999, 12, 25, 8))])
    def test_occurrence_past_the_last_date_fails(self, kind, ref):
        with pytest.raises(ValidationError) as excinfo:
            next_occurrence(kind, ref)
        assert not isinstance(excinfo.value, InvalidRecurrenceKind)

    @pytest.mark.parametrize("kind", ["monthly", "", "DAILY", None, 7])
    def test_unsupported_kind_fails(self, kind):
        with pytest.raises(InvalidRecurrenceKind) as excinfo:
            next_occurrence(kind, utc(2024, 1, 1))
        assert isinstance(excinfo.value, ValidationError)


def make_source(repo, owner_id=1, kind="daily", date=None, text="Stretch", **extra):
    fields = {
        "text": text,
        "owner_id": owner_id,
        "date": date or utc(2024, 1, 1),
        "recurrence": kind,
    }
    fields.update(extra)
    return repo.create(fields)


def instances_of(repo, source_id):
    return [t for t in repo.find() if t["original_todo_id"] == source_id]


class TestGenerator:
    def test_first_run_creates_next_instance(self):
        repo = InMemoryRepository()
        source = make_source(repo)

        report = generate_recurring_instances(repo, now=utc(2024, 1, 1, 5))

        assert len(report.created_ids) == 1
        assert report.failed_source_ids == []
        instance = repo.get(report.created_ids[0])
        assert instance["date"] == utc(2024, 1, 2)
        assert instance["is_recurring_instance"] is True
        assert instance["original_todo_id"] == source["id"]
        assert instance["recurrence"] == "daily"
        assert instance["text"] == source["text"]
        assert instance["owner_id"] == source["owner_id"]
        assert repo.get(source["id"])["next_recurrence"] == utc(2024, 1, 3)

    def test_instance_is_appended_to_owner_list(self):
        repo = InMemoryRepository()
        repo.create({"text": "one", "owner_id": 1})
        repo.create({"text": "two", "owner_id": 1})
        repo.create({"text": "someone else", "owner_id": 2})
        make_source(repo, owner_id=1)

        report = generate_recurring_instances(repo, now=utc(2024, 1, 1))

        # three todos existed for owner 1 before the instance was created
        assert repo.get(report.created_ids[0])["order"] == 3

    def test_source_is_not_due_before_next_recurrence(self):
        repo = InMemoryRepository()
        make_source(repo)
        generate_recurring_instances(repo, now=utc(2024, 1, 1, 5))

        report = generate_recurring_instances(repo, now=utc(2024, 1, 2, 23, 59))
        assert report.created_ids == []

    def test_later_run_advances_the_series(self):
        repo = InMemoryRepository()
        source = make_source(repo)
        generate_recurring_instances(repo, now=utc(2024, 1, 1, 5))

        report = generate_recurring_instances(repo, now=utc(2024, 1, 3, 0, 30))

        assert len(report.created_ids) == 1
        assert repo.get(report.created_ids[0])["date"] == utc(2024, 1, 3)
        assert repo.get(source["id"])["next_recurrence"] == utc(2024, 1, 4)
        dates = sorted(t["date"] for t in instances_of(repo, source["id"]))
        assert dates == [utc(2024, 1, 2), utc(2024, 1, 3)]

    def test_weekly_source(self):
        repo = InMemoryRepository()
        source = make_source(repo, kind="weekly", date=utc(2024, 1, 1, 9, 30))

        report = generate_recurring_instances(repo, now=utc(2024, 1, 1, 10))

        assert repo.get(report.created_ids[0])["date"] == utc(2024, 1, 8)
        assert repo.get(source["id"])["next_recurrence"] == utc(2024, 1, 15)

    def test_generated_instances_do_not_spawn(self):
        repo = InMemoryRepository()
        make_source(repo)
        generate_recurring_instances(repo, now=utc(2024, 1, 1))

        # far in the future every pointer is due, but only the source spawns
        report = generate_recurring_instances(repo, now=utc(2030, 1, 1))
        assert len(report.created_ids) == 1
        assert len(repo.find(TodoFilter(is_recurring_instance=True))) == 2

    def test_one_off_todos_are_ignored(self):
        repo = InMemoryRepository()
        repo.create({"text": "once", "owner_id": 1, "date": utc(2024, 1, 1)})

        report = generate_recurring_instances(repo, now=utc(2024, 2, 1))
        assert report.processed == 0
        assert len(repo.find()) == 1

    def test_failure_on_one_source_does_not_stop_the_batch(self):
        class FlakyRepository(InMemoryRepository):
            def create(self, fields):
                if fields.get("is_recurring_instance") and fields["text"] == "broken":
                    raise RuntimeError("disk full")
                return super().create(fields)

        repo = FlakyRepository()
        broken = make_source(repo, text="broken")
        healthy = make_source(repo, text="healthy", owner_id=2)

        report = generate_recurring_instances(repo, now=utc(2024, 1, 1))

        assert report.failed_source_ids == [broken["id"]]
        assert len(report.created_ids) == 1
        assert repo.get(report.created_ids[0])["original_todo_id"] == healthy["id"]
        # the failed source stays due and is retried on the next run
        assert repo.get(broken["id"])["next_recurrence"] is None
        assert repo.get(healthy["id"])["next_recurrence"] == utc(2024, 1, 3)

    def test_pointer_failure_repeats_instance_on_next_run(self):
        class PointerFailsOnce(InMemoryRepository):
            failed = False

            def update(self, todo_id, patch, owner_id=None):
                if "next_recurrence" in patch and not self.failed:
                    self.failed = True
                    raise RuntimeError("connection reset")
                return super().update(todo_id, patch, owner_id)

        repo = PointerFailsOnce()
        source = make_source(repo)

        first = generate_recurring_instances(repo, now=utc(2024, 1, 1))
        second = generate_recurring_instances(repo, now=utc(2024, 1, 1, 1))

        assert first.failed_source_ids == [source["id"]]
        assert len(second.created_ids) == 1
        # at-least-once: the same occurrence was materialized twice
        assert [t["date"] for t in instances_of(repo, source["id"])] == [utc(2024, 1, 2), utc(2024, 1, 2)]
        assert repo.get(source["id"])["next_recurrence"] == utc(2024, 1, 3)

    def test_exhausted_series_fails_without_creating_instances(self):
        repo = InMemoryRepository()
        source = make_source(repo)
        repo.update(source["id"], {"next_recurrence": utc(9999, 12, 31)})
        late = utc(9999, 12, 31, 12)

        for _ in range(2):
            report = generate_recurring_instances(repo, now=late)
            assert report.failed_source_ids == [source["id"]]
            assert report.created_ids == []

        assert instances_of(repo, source["id"]) == []
        assert repo.get(source["id"])["next_recurrence"] == utc(9999, 12, 31)

    @pytest.mark.parametrize("kind,date", [("daily", utc(9999, 12, 30)), ("weekly", utc(9999, 12, 18))])
    def test_store_rejects_sources_without_room_for_a_series(self, kind, date):
        repo = InMemoryRepository()
        with pytest.raises(ValidationError):
            make_source(repo, kind=kind, date=date)
