"""
History Store — append/merge-only ledger of completion days per (user, task name).

A record outlives the tasks that fed it: deleting or pruning a task first
merges its completion days here. Merging is a de-duplicated union, so
applying the same days twice (an overlapping cleanup run, a retried delete)
changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from momentum.db.base import normalize_days
from momentum.db.models import Task, TaskHistory
from momentum.engine.errors import DependencyFailureError
from momentum.engine.logging import log, log_history_merge

logger = logging.getLogger("momentum.history.store")


def merge_days(existing: Iterable[date], incoming: Iterable[date]) -> Tuple[List[date], int]:
    """Union of two day collections. Returns (sorted union, number of new days)."""
    current = set(normalize_days(existing))
    new = set(normalize_days(incoming)) - current
    return sorted(current | new), len(new)


@dataclass
class MergeOutcome:
    user_id: str
    task_name: str
    added: int = 0
    total: int = 0
    created: bool = False


@dataclass
class TaskMergeReport:
    """Per-assignee result of merging one task's days."""
    task_id: str
    merged: List[MergeOutcome] = field(default_factory=list)
    failures: List[DependencyFailureError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class HistoryStore:
    """Session-bound access to ``task_history``. The caller owns the transaction."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, user_id: str, task_name: str) -> Optional[TaskHistory]:
        stmt = select(TaskHistory).where(
            TaskHistory.user_id == user_id,
            TaskHistory.task_name == task_name,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def merge(
        self,
        user_id: str,
        task_name: str,
        days: Iterable[date],
        team_id: Optional[str] = None,
        source: str = "delete",
    ) -> MergeOutcome:
        """
        Union *days* into the (user, task name) record, creating it lazily.

        A concurrent first merge for the same pair loses the unique-constraint
        race inside a SAVEPOINT; we then reload the winner's row and merge
        into it.
        """
        days = normalize_days(days)
        outcome = MergeOutcome(user_id=user_id, task_name=task_name)
        if not days:
            return outcome

        record = self.get(user_id, task_name)
        if record is None:
            try:
                with self._session.begin_nested():
                    record = TaskHistory(
                        user_id=user_id,
                        task_name=task_name,
                        team_id=team_id,
                        completed_days=days,
                    )
                    self._session.add(record)
                outcome.created = True
                outcome.added = outcome.total = len(days)
            except IntegrityError:
                logger.info(f"History record for ({user_id}, '{task_name}') created concurrently, merging")
                record = self.get(user_id, task_name)
                if record is None:
                    raise

        if not outcome.created:
            merged, added = merge_days(record.completed_days or [], days)
            if added:
                record.completed_days = merged
            if team_id and not record.team_id:
                record.team_id = team_id
            outcome.added = added
            outcome.total = len(merged)
            self._session.flush()

        log(log_history_merge(
            user_id=user_id,
            task_name=task_name,
            merged_days=outcome.added,
            total_days=outcome.total,
            source=source,
            created=outcome.created,
        ))
        return outcome

    def merge_task(
        self,
        task: Task,
        days: Optional[Iterable[date]] = None,
        source: str = "delete",
    ) -> TaskMergeReport:
        """
        Merge a task's completion days (or the given subset) into the history
        of every assignee. Each assignee is merged in its own SAVEPOINT so one
        failure leaves the others and the outer transaction intact.
        """
        if days is None:
            days = task.completed_days or []
        days = normalize_days(days)
        report = TaskMergeReport(task_id=task.id)
        if not days:
            return report

        for user_id in task.assignees or []:
            try:
                with self._session.begin_nested():
                    report.merged.append(
                        self.merge(user_id, task.name, days, team_id=task.team_id, source=source)
                    )
            except SQLAlchemyError as e:
                err = DependencyFailureError(
                    f"History merge failed for '{task.name}' / {user_id}: {e}",
                    dependency="history_store",
                    task_id=task.id,
                    user_id=user_id,
                )
                logger.error(repr(err))
                report.failures.append(err)

        if report.ok:
            logger.info(
                f"Saved task '{task.name}' to history for {len(report.merged)} users ({len(days)} days)"
            )
        return report

    def for_user(self, user_id: str) -> List[TaskHistory]:
        stmt = (
            select(TaskHistory)
            .where(TaskHistory.user_id == user_id)
            .order_by(TaskHistory.created_at.desc())
        )
        return list(self._session.execute(stmt).scalars())

    def for_team(self, team_id: str) -> List[TaskHistory]:
        stmt = (
            select(TaskHistory)
            .where(TaskHistory.team_id == team_id)
            .order_by(TaskHistory.created_at.desc())
        )
        return list(self._session.execute(stmt).scalars())
