"""
Momentum Models — SQLAlchemy tables for the task lifecycle.

Tables:
1. tasks             — one row per unit of work (optimistic version counter)
2. task_completions  — per-assignee, per-day completion marks
3. task_history      — completion-date ledger per (user, task name)
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from momentum.db.base import Base, DateList, TimestampMixin, UTCDateTime

PRIORITIES = ("low", "medium", "high", "urgent")
ASSIGNMENT_TYPES = ("individual", "multiple", "team")


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# 1. Tasks
# ---------------------------------------------------------------------------

class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Assignment
    assignees = Column(JSON, nullable=False, default=list)
    assigned_by = Column(String(64), nullable=False, index=True)
    team_id = Column(String(64), nullable=True, index=True)
    assignment_type = Column(String(20), nullable=False, default="individual")

    # Scheduling metadata
    priority = Column(String(10), nullable=False, default="medium")
    due_date = Column(Date, nullable=True, index=True)
    tags = Column(JSON, nullable=False, default=list)

    # Completion state
    completed_days = Column(DateList, nullable=False, default=list)
    last_completed_date = Column(Date, nullable=True)

    # Archival state
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(UTCDateTime, nullable=True)

    version = Column(Integer, nullable=False)

    completions = relationship(
        "TaskCompletion",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TaskCompletion.completed_at",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_tasks_priority",
        ),
        CheckConstraint(
            "assignment_type IN ('individual', 'multiple', 'team')",
            name="ck_tasks_assignment_type",
        ),
        Index("idx_tasks_archival", "is_archived", "archived_at"),
        Index("idx_tasks_archived_team", "is_archived", "team_id"),
    )

    @property
    def is_team_task(self) -> bool:
        return self.team_id is not None

    def is_assignee(self, user_id: str) -> bool:
        return user_id in (self.assignees or [])

    def completions_on(self, day: date) -> List["TaskCompletion"]:
        return [c for c in self.completions if c.completed_on == day]

    def completion_for(self, user_id: str, day: date) -> Optional["TaskCompletion"]:
        for c in self.completions:
            if c.user_id == user_id and c.completed_on == day:
                return c
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "assignedTo": list(self.assignees or []),
            "assignedBy": self.assigned_by,
            "team": self.team_id,
            "isTeamTask": self.is_team_task,
            "assignmentType": self.assignment_type,
            "priority": self.priority,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "tags": list(self.tags or []),
            "completedDays": [d.isoformat() for d in self.completed_days or []],
            "completedBy": [c.to_dict() for c in self.completions],
            "lastCompletedDate": self.last_completed_date.isoformat() if self.last_completed_date else None,
            "isArchived": bool(self.is_archived),
            "archivedAt": self.archived_at.isoformat() if self.archived_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Task(id='{self.id}', name='{self.name}', archived={self.is_archived})>"


# ---------------------------------------------------------------------------
# 2. Per-assignee completion marks
# ---------------------------------------------------------------------------

class TaskCompletion(Base):
    __tablename__ = "task_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    completed_on = Column(Date, nullable=False)
    completed_at = Column(UTCDateTime, nullable=False)

    task = relationship("Task", back_populates="completions")

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", "completed_on", name="uq_completion_user_day"),
        Index("idx_completions_task_day", "task_id", "completed_on"),
    )

    def to_dict(self) -> dict:
        return {
            "user": self.user_id,
            "completedOn": self.completed_on.isoformat(),
            "completedAt": self.completed_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<TaskCompletion(task='{self.task_id}', user='{self.user_id}', day={self.completed_on})>"


# ---------------------------------------------------------------------------
# 3. Completion history ledger
# ---------------------------------------------------------------------------

class TaskHistory(Base, TimestampMixin):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    task_name = Column(String(200), nullable=False)
    team_id = Column(String(64), nullable=True, index=True)
    completed_days = Column(DateList, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("user_id", "task_name", name="uq_history_user_task"),
    )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "taskName": self.task_name,
            "teamId": self.team_id,
            "completedDays": [d.isoformat() for d in self.completed_days or []],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<TaskHistory(user='{self.user_id}', task='{self.task_name}', days={len(self.completed_days or [])})>"
