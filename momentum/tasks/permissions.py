"""
Authorization rules for task operations.

    complete / uncomplete   assignees
    edit                    creator, team owner/admin, assignees
      assignment fields     creator, team owner/admin only
    delete                  creator, team owner/admin
    team listings/history   team members
"""

from __future__ import annotations

from typing import Optional

from momentum.db.models import Task
from momentum.engine.errors import ForbiddenError, NotFoundError
from momentum.engine.logging import log, log_access_denied
from momentum.records.task import TaskUpdate
from momentum.teams.directory import Team, TeamDirectory, TeamMember


def deny_access(message: str, task: Optional[Task], user_id: str, operation: str, permission: str) -> ForbiddenError:
    log(log_access_denied(task.id if task else None, user_id, operation, message))
    return ForbiddenError(
        message,
        task_id=task.id if task else None,
        user_id=user_id,
        required_permission=permission,
    )


def is_creator(task: Task, user_id: str) -> bool:
    return task.assigned_by == user_id


def can_manage(task: Task, user_id: str, teams: TeamDirectory) -> bool:
    """Creator, or owner/admin of the owning team."""
    return is_creator(task, user_id) or teams.is_manager(task.team_id, user_id)


def check_edit(task: Task, user_id: str, update: TaskUpdate, teams: TeamDirectory) -> None:
    manager = can_manage(task, user_id, teams)
    if not manager and not task.is_assignee(user_id):
        raise deny_access("Access denied", task, user_id, "edit", "creator_or_assignee")
    if update.touches_assignment and not manager:
        raise deny_access(
            "Only task assigners or team admins can modify assignment details",
            task, user_id, "edit", "creator_or_team_admin",
        )


def check_delete(task: Task, user_id: str, teams: TeamDirectory) -> None:
    if not can_manage(task, user_id, teams):
        raise deny_access(
            "Only task assigners or team admins can delete tasks",
            task, user_id, "delete", "creator_or_team_admin",
        )


def require_team(team_id: str, teams: TeamDirectory) -> Team:
    team = teams.get_team(team_id)
    if team is None:
        raise NotFoundError("Team not found", record_type="team", record_id=team_id)
    return team


def require_member(team_id: str, user_id: str, teams: TeamDirectory) -> TeamMember:
    require_team(team_id, teams)
    member = teams.get_membership(team_id, user_id)
    if member is None:
        raise deny_access("You are not a member of this team", None, user_id, "team_access", "team_member")
    return member
