"""Due-date reminders: notify assignees of active tasks due tomorrow."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from momentum.db.models import Task
from momentum.db.session import session_scope
from momentum.engine.clock import Clock, tomorrow, utc_now
from momentum.integrations.notifications import (
    NotificationBatch,
    NotificationService,
    task_due_reminder_message,
)
from momentum.teams.directory import TeamDirectory

logger = logging.getLogger("momentum.process.reminders")


class DueDateReminders:
    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: NotificationService,
        teams: Optional[TeamDirectory] = None,
        clock: Clock = utc_now,
        settle_timeout: float = 30.0,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._teams = teams
        self._clock = clock
        self._settle_timeout = settle_timeout

    def _team_name(self, team_id: Optional[str]) -> Optional[str]:
        if not team_id or self._teams is None:
            return None
        team = self._teams.get_team(team_id)
        return team.name if team else None

    def run(self) -> int:
        """Send reminders and wait for them to settle. Returns notifications attempted."""
        due = tomorrow(self._clock)
        with session_scope(self._session_factory) as session:
            tasks = list(session.execute(
                select(Task).where(Task.is_archived.is_(False), Task.due_date == due)
            ).scalars())
        logger.info(f"Found {len(tasks)} tasks due {due.isoformat()}")

        batches: List[NotificationBatch] = []
        for task in tasks:
            try:
                batches.append(self._notifier.notify_many(
                    task.assignees or [],
                    "task_due_reminder",
                    task_due_reminder_message(task, self._team_name(task.team_id)),
                ))
            except Exception as e:
                logger.error(f"Error sending reminder for task {task.id}: {e}")

        attempted = delivered = 0
        for batch in batches:
            attempted += len(batch)
            delivered += batch.settle(timeout=self._settle_timeout)["delivered"]
        logger.info(f"Due date reminders: {delivered}/{attempted} delivered")
        return attempted
