"""
Task Service — create / edit / delete, the Completion API and read views.

Every public method opens its own transaction through ``session_scope`` and
returns plain dicts (``Task.to_dict()`` shape), so callers never hold live
ORM objects.

Completion toggles run under the task's optimistic version counter: a
concurrent writer makes the UPDATE match zero rows, SQLAlchemy raises
``StaleDataError`` and the whole read-modify-write is retried.

Notifications are sent after commit and never fail the operation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from momentum.db.models import Task
from momentum.db.session import session_scope
from momentum.engine.clock import Clock, day_of, utc_now
from momentum.engine.errors import (
    ConflictError,
    DependencyFailureError,
    NotAssigneeError,
    NotFoundError,
    ValidationError,
)
from momentum.engine.logging import log, log_access_denied, log_task_event
from momentum.history.store import HistoryStore
from momentum.integrations.notifications import (
    NotificationService,
    task_assigned_message,
    task_completed_message,
)
from momentum.records.task import TaskInput, TaskUpdate
from momentum.tasks import lifecycle
from momentum.tasks.permissions import (
    check_delete,
    check_edit,
    deny_access,
    require_member,
    require_team,
)
from momentum.teams.directory import TeamDirectory

logger = logging.getLogger("momentum.tasks.service")

LIST_KINDS = ("all", "personal", "team")
TEAM_STATUSES = ("active", "archived", "all")
UPCOMING_WINDOW_DAYS = 7


def parse_record(model: type, payload: Union[BaseModel, Dict[str, Any]]) -> Any:
    """Validate a request payload into *model*, raising our ValidationError."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            errors[0]["message"] if len(errors) == 1 else f"{len(errors)} validation errors",
            validation_errors=errors,
        ) from e


class TaskService:
    """
    Usage:
        service = TaskService(session_factory, teams, notifier)
        task = service.create_task("u1", {"name": "Water plants"})
        service.toggle_completion(task["id"], "u1", True)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        teams: TeamDirectory,
        notifier: Optional[NotificationService] = None,
        clock: Clock = utc_now,
        completion_retries: int = 3,
    ):
        self._session_factory = session_factory
        self._teams = teams
        self._notifier = notifier
        self._clock = clock
        self._completion_retries = max(1, completion_retries)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _load(self, session: Session, task_id: str) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found", record_type="task", record_id=task_id, task_id=task_id)
        return task

    def _team_name(self, team_id: Optional[str]) -> Optional[str]:
        if not team_id:
            return None
        team = self._teams.get_team(team_id)
        return team.name if team and team.name else None

    def _check_team_assignees(self, team_id: str, assignees: List[str]) -> None:
        team = require_team(team_id, self._teams)
        outsiders = [a for a in assignees if a not in team.member_ids]
        if outsiders:
            raise ValidationError(
                "Some assigned users are not team members",
                validation_errors=[{"field": "assignedTo", "message": f"not team members: {outsiders}"}],
            )

    def _dispatch(self, send: Callable[..., Any], *args: Any) -> None:
        """Hand a notification to the notifier; a failure here is logged only."""
        if self._notifier is None:
            return
        try:
            send(*args)
        except Exception as e:
            err = DependencyFailureError(f"Could not queue notification: {e}", dependency="notifications")
            logger.error(repr(err))

    def _can_view(self, task: Task, user_id: str) -> bool:
        if task.is_assignee(user_id) or task.assigned_by == user_id:
            return True
        return bool(task.team_id) and self._teams.get_membership(task.team_id, user_id) is not None

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def create_task(self, actor: str, payload: Union[TaskInput, Dict[str, Any]]) -> Dict[str, Any]:
        data: TaskInput = parse_record(TaskInput, payload)

        team = None
        if data.team_id:
            team = require_team(data.team_id, self._teams)
            require_member(data.team_id, actor, self._teams)

        if data.assignment_type == "team" and team is not None:
            assignees = team.member_ids
        elif data.assignees:
            assignees = data.assignees
            if team is not None:
                self._check_team_assignees(team.team_id, assignees)
        else:
            assignees = [actor]

        task = Task(
            name=data.name,
            description=data.description,
            assignees=assignees,
            assigned_by=actor,
            team_id=data.team_id,
            assignment_type=data.assignment_type,
            priority=data.priority,
            due_date=data.due_date,
            tags=data.tags,
            completed_days=[],
            is_archived=False,
        )
        with session_scope(self._session_factory) as session:
            session.add(task)
            session.flush()
            result = task.to_dict()

        logger.info(f"Task '{task.name}' ({task.id}) created by {actor} for {len(assignees)} assignee(s)")
        log(log_task_event("created", task.id, user_id=actor, task_name=task.name))

        others = [a for a in assignees if a != actor]
        if others and self._notifier is not None:
            self._dispatch(
                self._notifier.notify_many, others, "task_assigned",
                task_assigned_message(task, actor, self._team_name(task.team_id)),
            )
        return result

    # -----------------------------------------------------------------------
    # Completion API
    # -----------------------------------------------------------------------

    def toggle_completion(self, task_id: str, actor: str, completed: bool) -> Dict[str, Any]:
        """
        Complete or uncomplete *task_id* for today on behalf of *actor*.

        Raises:
            NotFoundError:    unknown task
            NotAssigneeError: actor is not an assignee
            ConflictError:    still losing to concurrent writers after all retries
        """
        for attempt in range(1, self._completion_retries + 1):
            try:
                with session_scope(self._session_factory) as session:
                    task = self._load(session, task_id)
                    now = self._clock()
                    try:
                        changed = lifecycle.toggle(task, actor, completed, now)
                    except NotAssigneeError as e:
                        log(log_access_denied(task_id, actor, "complete", e.message))
                        raise
                    result = task.to_dict()
                break
            except (StaleDataError, IntegrityError) as e:
                logger.warning(
                    f"Completion toggle on {task_id} by {actor} lost a concurrent update "
                    f"(attempt {attempt}/{self._completion_retries}): {e.__class__.__name__}"
                )
        else:
            raise ConflictError(
                "Task was modified concurrently, please retry",
                task_id=task_id,
                user_id=actor,
                attempts=self._completion_retries,
            )

        day = day_of(now)
        event = "completed" if completed else "uncompleted"
        if changed:
            logger.info(f"Task {task_id} {event} by {actor} for {day} (archived={task.is_archived})")
            log(log_task_event(event, task_id, user_id=actor, task_name=task.name,
                               is_archived=bool(task.is_archived), day=day))

        if completed and changed and actor != task.assigned_by and self._notifier is not None:
            self._dispatch(
                self._notifier.notify, task.assigned_by, "task_completed",
                task_completed_message(task, actor, self._team_name(task.team_id)),
            )
        return result

    # -----------------------------------------------------------------------
    # Edit / delete
    # -----------------------------------------------------------------------

    def update_task(self, task_id: str, actor: str, payload: Union[TaskUpdate, Dict[str, Any]]) -> Dict[str, Any]:
        update: TaskUpdate = parse_record(TaskUpdate, payload)
        try:
            with session_scope(self._session_factory) as session:
                task = self._load(session, task_id)
                check_edit(task, actor, update, self._teams)

                team_id = update.team_id if "team_id" in update.model_fields_set else task.team_id
                if team_id and ("team_id" in update.model_fields_set or "assignees" in update.model_fields_set):
                    self._check_team_assignees(team_id, update.assignees or task.assignees or [])

                changed = lifecycle.apply_update(task, update, self._clock())
                session.flush()
                result = task.to_dict()
        except StaleDataError as e:
            raise ConflictError("Task was modified concurrently, please retry",
                                task_id=task_id, user_id=actor) from e

        if changed:
            log(log_task_event("updated", task_id, user_id=actor, task_name=result["name"],
                               fields_changed=changed))
        return result

    def delete_task(self, task_id: str, actor: str) -> Dict[str, Any]:
        """
        Hard-delete a task after merging its completion days into every
        assignee's history. Merge failures are logged and do not block the
        deletion.
        """
        try:
            with session_scope(self._session_factory) as session:
                task = self._load(session, task_id)
                check_delete(task, actor, self._teams)
                report = HistoryStore(session).merge_task(task, source="delete")
                name = task.name
                session.delete(task)
        except StaleDataError as e:
            raise ConflictError("Task was modified concurrently, please retry",
                                task_id=task_id, user_id=actor) from e

        for failure in report.failures:
            logger.error(f"History not preserved while deleting {task_id}: {failure.message}")
        logger.info(f"Task '{name}' ({task_id}) deleted by {actor}")
        log(log_task_event("deleted", task_id, user_id=actor, task_name=name))
        return {
            "id": task_id,
            "deleted": True,
            "historyMerged": len(report.merged),
            "historyFailed": len(report.failures),
        }

    # -----------------------------------------------------------------------
    # Read views
    # -----------------------------------------------------------------------

    def get_task(self, task_id: str, actor: str) -> Dict[str, Any]:
        with session_scope(self._session_factory) as session:
            task = self._load(session, task_id)
            if not self._can_view(task, actor):
                raise deny_access("Access denied", task, actor, "view", "task_participant")
            return task.to_dict()

    def list_user_tasks(
        self,
        actor: str,
        kind: str = "all",
        team_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Tasks assigned to *user_id* (default: the actor), newest first."""
        if kind not in LIST_KINDS:
            raise ValidationError(f"type must be one of {LIST_KINDS}, got '{kind}'")
        target = user_id or actor

        stmt = select(Task).order_by(Task.created_at.desc())
        if kind == "personal":
            stmt = stmt.where(Task.team_id.is_(None))
        elif kind == "team":
            stmt = stmt.where(Task.team_id == team_id) if team_id else stmt.where(Task.team_id.is_not(None))

        with session_scope(self._session_factory) as session:
            tasks = session.execute(stmt).scalars().all()
            return [t.to_dict() for t in tasks if t.is_assignee(target)]

    def list_team_tasks(self, actor: str, team_id: str, status: str = "active") -> List[Dict[str, Any]]:
        if status not in TEAM_STATUSES:
            raise ValidationError(f"status must be one of {TEAM_STATUSES}, got '{status}'")
        require_member(team_id, actor, self._teams)

        stmt = select(Task).where(Task.team_id == team_id).order_by(Task.created_at.desc())
        if status == "active":
            stmt = stmt.where(Task.is_archived.is_(False))
        elif status == "archived":
            stmt = stmt.where(Task.is_archived.is_(True))

        with session_scope(self._session_factory) as session:
            return [t.to_dict() for t in session.execute(stmt).scalars()]

    def dashboard_stats(self, actor: str, team_id: Optional[str] = None) -> Dict[str, int]:
        """
        Counts over the actor's tasks:
            totalTasks      not archived
            completedToday  completion day == today
            overdueTasks    not archived, due before today
            upcomingTasks   not archived, due within the next 7 days
        """
        today = day_of(self._clock())
        horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)

        stmt = select(Task)
        if team_id:
            stmt = stmt.where(Task.team_id == team_id)

        stats = {"totalTasks": 0, "completedToday": 0, "overdueTasks": 0, "upcomingTasks": 0}
        with session_scope(self._session_factory) as session:
            for task in session.execute(stmt).scalars():
                if not task.is_assignee(actor):
                    continue
                if today in (task.completed_days or []):
                    stats["completedToday"] += 1
                if task.is_archived:
                    continue
                stats["totalTasks"] += 1
                if task.due_date is not None:
                    if task.due_date < today:
                        stats["overdueTasks"] += 1
                    elif task.due_date <= horizon:
                        stats["upcomingTasks"] += 1
        return stats

    def get_history(
        self,
        actor: str,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """History records for a team (members only) or a user (default: the actor)."""
        with session_scope(self._session_factory) as session:
            store = HistoryStore(session)
            if team_id:
                require_member(team_id, actor, self._teams)
                records = store.for_team(team_id)
            else:
                records = store.for_user(user_id or actor)
            return [r.to_dict() for r in records]

    def heatmap(self, actor: str, user_id: Optional[str] = None) -> Dict[str, int]:
        """
        ISO day -> number of distinct task names completed that day, from
        history records plus the live tasks' not-yet-archived days.
        """
        target = user_id or actor
        names_by_day: Dict[date, Set[str]] = defaultdict(set)

        with session_scope(self._session_factory) as session:
            for record in HistoryStore(session).for_user(target):
                for day in record.completed_days or []:
                    names_by_day[day].add(record.task_name)
            for task in session.execute(select(Task)).scalars():
                if not task.is_assignee(target):
                    continue
                for day in task.completed_days or []:
                    names_by_day[day].add(task.name)

        return {day.isoformat(): len(names) for day, names in sorted(names_by_day.items())}


