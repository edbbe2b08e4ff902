"""Unit tests for momentum.history.store — idempotent completion-day ledger."""

from datetime import date, timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from conftest import TODAY, YESTERDAY
from momentum.db.models import Task, TaskHistory
from momentum.db.session import session_scope
from momentum.history.store import HistoryStore, merge_days

D1 = date(2026, 10, 1)
D2 = date(2026, 10, 2)
D3 = date(2026, 10, 3)


class TestMergeDays:
    def test_union_sorted(self):
        merged, added = merge_days([D3, D1], [D2, D1])
        assert merged == [D1, D2, D3]
        assert added == 1

    def test_accepts_iso_strings(self):
        merged, added = merge_days(["2026-10-01"], ["2026-10-01T08:30:00Z", D2])
        assert merged == [D1, D2]
        assert added == 1


class TestHistoryStoreMerge:
    def test_first_merge_creates_record(self, session_factory):
        with session_scope(session_factory) as session:
            outcome = HistoryStore(session).merge("alice", "Water plants", [D2, D1], team_id="t1")
        assert outcome.created is True
        assert outcome.added == 2

        with session_scope(session_factory) as session:
            record = HistoryStore(session).get("alice", "Water plants")
            assert record.completed_days == [D1, D2]
            assert record.team_id == "t1"

    def test_merge_is_idempotent(self, session_factory):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1, D2])
        with session_scope(session_factory) as session:
            outcome = HistoryStore(session).merge("alice", "Water plants", [D1, D2])
        assert outcome.created is False
        assert outcome.added == 0
        assert outcome.total == 2

    def test_merge_never_removes_days(self, session_factory):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1, D2])
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D3])
        with session_scope(session_factory) as session:
            assert HistoryStore(session).get("alice", "Water plants").completed_days == [D1, D2, D3]

    def test_empty_days_create_nothing(self, session_factory):
        with session_scope(session_factory) as session:
            outcome = HistoryStore(session).merge("alice", "Water plants", [])
            assert outcome.total == 0
            assert HistoryStore(session).get("alice", "Water plants") is None

    def test_team_id_filled_in_later(self, session_factory):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1])
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1], team_id="t1")
        with session_scope(session_factory) as session:
            assert HistoryStore(session).get("alice", "Water plants").team_id == "t1"

    def test_concurrent_first_insert_falls_back_to_merge(self, session_factory):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1])

        with session_scope(session_factory) as session:
            store = HistoryStore(session)
            existing = store.get("alice", "Water plants")
            # First lookup misses as if the other writer had not committed yet
            with patch.object(store, "get", side_effect=[None, existing]):
                outcome = store.merge("alice", "Water plants", [D2])
            assert outcome.created is False
            assert outcome.added == 1

        with session_scope(session_factory) as session:
            assert session.query(TaskHistory).count() == 1
            assert HistoryStore(session).get("alice", "Water plants").completed_days == [D1, D2]


class TestMergeTask:
    def _task(self, session, **fields):
        fields.setdefault("name", "Water plants")
        fields.setdefault("assignees", ["alice", "bob"])
        fields.setdefault("assigned_by", "alice")
        fields.setdefault("completed_days", [YESTERDAY, TODAY])
        task = Task(**fields)
        session.add(task)
        session.flush()
        return task

    def test_merges_for_every_assignee(self, session_factory, load_history):
        with session_scope(session_factory) as session:
            report = HistoryStore(session).merge_task(self._task(session))
        assert report.ok
        assert {m.user_id for m in report.merged} == {"alice", "bob"}
        assert load_history("alice", "Water plants") == [YESTERDAY, TODAY]
        assert load_history("bob", "Water plants") == [YESTERDAY, TODAY]

    def test_subset_of_days(self, session_factory, load_history):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge_task(self._task(session), days=[YESTERDAY], source="prune")
        assert load_history("alice", "Water plants") == [YESTERDAY]

    def test_one_assignee_failure_is_isolated(self, session_factory, load_history):
        with session_scope(session_factory) as session:
            store = HistoryStore(session)
            task = self._task(session)
            real_merge = store.merge

            def flaky(user_id, *args, **kwargs):
                if user_id == "bob":
                    raise OperationalError("UPDATE task_history", {}, Exception("disk I/O error"))
                return real_merge(user_id, *args, **kwargs)

            with patch.object(store, "merge", side_effect=flaky):
                report = store.merge_task(task)

        assert not report.ok
        assert len(report.failures) == 1
        assert report.failures[0].user_id == "bob"
        assert report.failures[0].dependency == "history_store"
        assert load_history("alice", "Water plants") == [YESTERDAY, TODAY]
        assert load_history("bob", "Water plants") is None


class TestReads:
    def test_for_user_and_team(self, session_factory):
        with session_scope(session_factory) as session:
            store = HistoryStore(session)
            store.merge("alice", "Water plants", [D1], team_id="t1")
            store.merge("alice", "Read", [D1])
            store.merge("bob", "Water plants", [D2], team_id="t1")

        with session_scope(session_factory) as session:
            store = HistoryStore(session)
            assert {r.task_name for r in store.for_user("alice")} == {"Water plants", "Read"}
            assert {r.user_id for r in store.for_team("t1")} == {"alice", "bob"}

    def test_to_dict(self, session_factory):
        with session_scope(session_factory) as session:
            HistoryStore(session).merge("alice", "Water plants", [D1 + timedelta(days=1), D1])
            d = HistoryStore(session).get("alice", "Water plants").to_dict()
        assert d["userId"] == "alice"
        assert d["completedDays"] == ["2026-10-01", "2026-10-02"]
