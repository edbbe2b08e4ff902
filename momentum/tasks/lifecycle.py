"""
Task completion state machine.

A task is ``Active`` or ``Archived``; the state is derived, never stored as
an enum. After every Complete / Uncomplete the archival flag is re-derived:

    is_archived  <=>  some assignee has a completion recorded for today

Completion days are kept as a set (one entry per day, shared by all
assignees); the per-assignee marks live in ``task.completions``. Removing
one assignee's mark only drops the shared day when nobody else completed
the task that day.

These functions mutate the Task in memory and never touch a session, so the
caller decides the transaction boundary.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from momentum.db.base import normalize_days
from momentum.db.models import Task, TaskCompletion
from momentum.engine.clock import as_utc, day_of
from momentum.engine.errors import NotAssigneeError
from momentum.records.task import TaskUpdate


def _require_assignee(task: Task, user_id: str, operation: str) -> None:
    if not task.is_assignee(user_id):
        raise NotAssigneeError(
            "You can only complete tasks assigned to you",
            task_id=task.id,
            user_id=user_id,
            required_permission="assignee",
            operation=operation,
        )


def has_completion_on(task: Task, day: date) -> bool:
    """True if a current assignee has a completion mark for *day*."""
    return any(task.is_assignee(c.user_id) for c in task.completions_on(day))


def last_completed(task: Task) -> Optional[date]:
    days = task.completed_days or []
    return max(days) if days else None


def is_archival_consistent(task: Task, today: date) -> bool:
    return bool(task.is_archived) == has_completion_on(task, today)


def sync_archival(task: Task, now: datetime) -> bool:
    """Re-derive the archival flag for the current day. Returns True on change."""
    completed_today = has_completion_on(task, day_of(now))
    if completed_today and not task.is_archived:
        task.is_archived = True
        task.archived_at = as_utc(now)
        return True
    if not completed_today and (task.is_archived or task.archived_at is not None):
        task.is_archived = False
        task.archived_at = None
        return True
    return False


def complete(task: Task, user_id: str, day: date, now: datetime) -> bool:
    """
    Mark *task* done by *user_id* on *day*.

    Returns False (and changes nothing) when the user already completed it
    that day.

    Raises:
        NotAssigneeError: user is not an assignee.
    """
    _require_assignee(task, user_id, "complete")
    if task.completion_for(user_id, day) is not None:
        return False

    now = as_utc(now)
    task.completions.append(
        TaskCompletion(user_id=user_id, completed_on=day, completed_at=now)
    )
    task.completed_days = normalize_days([*(task.completed_days or []), day])
    task.last_completed_date = last_completed(task)

    if day == day_of(now):
        task.is_archived = True
        task.archived_at = now
    else:
        sync_archival(task, now)
    # Always bump the row so the version check covers child-only changes
    task.updated_at = now
    return True


def uncomplete(task: Task, user_id: str, day: date, now: datetime) -> bool:
    """
    Remove *user_id*'s completion for *day*.

    The shared day entry survives if another assignee still has a mark for
    it. Returns True if anything changed.

    Raises:
        NotAssigneeError: user is not an assignee.
    """
    _require_assignee(task, user_id, "uncomplete")
    now = as_utc(now)
    changed = False

    record = task.completion_for(user_id, day)
    if record is not None:
        task.completions.remove(record)
        changed = True

    days = task.completed_days or []
    if day in days and not has_completion_on(task, day):
        task.completed_days = [d for d in days if d != day]
        changed = True

    task.last_completed_date = last_completed(task)
    changed = sync_archival(task, now) or changed
    if changed:
        task.updated_at = now
    return changed


def toggle(task: Task, user_id: str, completed: bool, now: datetime) -> bool:
    """Completion toggle for today."""
    if completed:
        return complete(task, user_id, day_of(now), now)
    return uncomplete(task, user_id, day_of(now), now)


def apply_update(task: Task, update: TaskUpdate, now: datetime) -> list:
    """
    Copy the fields present in *update* onto *task*. Returns the changed
    field names.

    Reassignment drops the completion marks of users no longer assigned
    and re-derives the archival flag from the remaining assignees.
    """
    changed = []
    for name, value in update.changes().items():
        if getattr(task, name) != value:
            setattr(task, name, list(value) if isinstance(value, list) else value)
            changed.append(name)
    if not changed:
        return []

    now = as_utc(now)
    if "assignees" in changed:
        for mark in [c for c in task.completions if not task.is_assignee(c.user_id)]:
            task.completions.remove(mark)
        sync_archival(task, now)
    task.updated_at = now
    return sorted(changed)
