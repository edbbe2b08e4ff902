"""Unit tests for momentum.tasks.lifecycle — completion state machine."""

from datetime import timedelta

import pytest

from conftest import NOW, TODAY, YESTERDAY
from momentum.db.models import Task
from momentum.engine.errors import ForbiddenError, NotAssigneeError
from momentum.records.task import TaskUpdate
from momentum.tasks import lifecycle


def new_task(*assignees: str) -> Task:
    return Task(
        id="task1",
        name="Water plants",
        assignees=list(assignees) or ["alice"],
        assigned_by="alice",
        completed_days=[],
        is_archived=False,
    )


class TestComplete:
    def test_complete_today_archives(self):
        task = new_task("alice")
        assert lifecycle.complete(task, "alice", TODAY, NOW) is True
        assert task.is_archived is True
        assert task.archived_at == NOW
        assert task.completed_days == [TODAY]
        assert task.last_completed_date == TODAY
        assert len(task.completions) == 1
        assert task.completions[0].user_id == "alice"
        assert task.completions[0].completed_at == NOW

    def test_complete_is_idempotent(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", TODAY, NOW)
        later = NOW + timedelta(hours=1)
        assert lifecycle.complete(task, "alice", TODAY, later) is False
        assert task.completed_days == [TODAY]
        assert len(task.completions) == 1
        assert task.archived_at == NOW

    def test_non_assignee_rejected(self):
        task = new_task("alice")
        with pytest.raises(NotAssigneeError) as exc_info:
            lifecycle.complete(task, "carol", TODAY, NOW)
        assert isinstance(exc_info.value, ForbiddenError)
        assert exc_info.value.status_code == 403
        assert task.completed_days == []
        assert not task.is_archived

    def test_second_assignee_same_day_adds_record_not_day(self):
        task = new_task("alice", "bob")
        lifecycle.complete(task, "alice", TODAY, NOW)
        assert lifecycle.complete(task, "bob", TODAY, NOW) is True
        assert task.completed_days == [TODAY]
        assert {c.user_id for c in task.completions} == {"alice", "bob"}

    def test_complete_past_day_does_not_archive(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", YESTERDAY, NOW)
        assert task.completed_days == [YESTERDAY]
        assert task.last_completed_date == YESTERDAY
        assert not task.is_archived
        assert task.archived_at is None

    def test_complete_bumps_updated_at(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", TODAY, NOW)
        assert task.updated_at == NOW


class TestUncomplete:
    def test_single_assignee_returns_to_active(self):
        task = new_task("alice", "bob")
        lifecycle.complete(task, "alice", TODAY, NOW)
        assert task.is_archived

        assert lifecycle.uncomplete(task, "alice", TODAY, NOW) is True
        assert not task.is_archived
        assert task.archived_at is None
        assert task.completed_days == []
        assert task.last_completed_date is None
        assert task.completions == []

    def test_shared_day_survives_other_assignee(self):
        task = new_task("alice", "bob")
        lifecycle.complete(task, "alice", TODAY, NOW)
        lifecycle.complete(task, "bob", TODAY, NOW)

        lifecycle.uncomplete(task, "alice", TODAY, NOW)
        assert task.is_archived
        assert task.completed_days == [TODAY]
        assert [c.user_id for c in task.completions] == ["bob"]

    def test_uncomplete_without_completion_is_noop(self):
        task = new_task("alice")
        assert lifecycle.uncomplete(task, "alice", TODAY, NOW) is False
        assert task.updated_at is None

    def test_last_completed_recomputed(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", YESTERDAY, NOW)
        lifecycle.complete(task, "alice", TODAY, NOW)
        lifecycle.uncomplete(task, "alice", TODAY, NOW)
        assert task.last_completed_date == YESTERDAY

    def test_non_assignee_rejected(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", TODAY, NOW)
        with pytest.raises(NotAssigneeError):
            lifecycle.uncomplete(task, "carol", TODAY, NOW)
        assert task.is_archived


class TestArchivalInvariant:
    @pytest.mark.parametrize("steps", [
        [("alice", True)],
        [("alice", True), ("alice", False)],
        [("alice", True), ("bob", True), ("alice", False)],
        [("alice", True), ("bob", True), ("alice", False), ("bob", False)],
        [("bob", True), ("bob", True), ("alice", False)],
    ])
    def test_archived_iff_completed_today(self, steps):
        task = new_task("alice", "bob")
        for user, completed in steps:
            lifecycle.toggle(task, user, completed, NOW)
            assert lifecycle.is_archival_consistent(task, TODAY)


class TestApplyUpdate:
    def test_returns_changed_fields(self):
        task = new_task("alice")
        task.description = None
        changed = lifecycle.apply_update(
            task, TaskUpdate(name="Water the plants", description=None), NOW
        )
        assert changed == ["name"]
        assert task.name == "Water the plants"
        assert task.updated_at == NOW

    def test_no_change_keeps_updated_at(self):
        task = new_task("alice")
        assert lifecycle.apply_update(task, TaskUpdate(name="Water plants"), NOW) == []
        assert task.updated_at is None

    def test_reassignment_drops_removed_assignees_marks(self):
        task = new_task("alice")
        lifecycle.complete(task, "alice", TODAY, NOW)
        later = NOW + timedelta(minutes=5)

        changed = lifecycle.apply_update(task, TaskUpdate(assignees=["bob"]), later)
        assert changed == ["assignees"]
        assert task.completions == []
        assert task.is_archived is False
        assert task.archived_at is None
        assert lifecycle.is_archival_consistent(task, TODAY)

        lifecycle.toggle(task, "bob", True, later)
        assert task.is_archived is True
        lifecycle.toggle(task, "bob", False, later)
        assert task.is_archived is False

    def test_reassignment_keeps_remaining_assignees_marks(self):
        task = new_task("alice", "bob")
        lifecycle.complete(task, "bob", TODAY, NOW)
        lifecycle.complete(task, "alice", TODAY, NOW)

        lifecycle.apply_update(task, TaskUpdate(assignees=["bob"]), NOW)
        assert [c.user_id for c in task.completions] == ["bob"]
        assert task.is_archived is True
        assert task.completed_days == [TODAY]

    def test_marks_of_unassigned_users_do_not_archive(self):
        task = new_task("alice", "bob")
        lifecycle.complete(task, "alice", TODAY, NOW)
        task.assignees = ["bob"]
        assert lifecycle.has_completion_on(task, TODAY) is False
        assert lifecycle.sync_archival(task, NOW) is True
        assert task.is_archived is False
