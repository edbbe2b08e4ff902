"""
Momentum Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Every test gets a fresh in-memory SQLite database, a frozen clock and an
in-memory team directory; nothing touches Postgres, Redis or the network.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

NOW = datetime(2026, 10, 16, 12, 0, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
YESTERDAY = TODAY - timedelta(days=1)
TOMORROW = TODAY + timedelta(days=1)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


# ---------------------------------------------------------------------------
# Global state isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset module-level singletons between tests."""
    import momentum.engine.config as cfg_mod
    import momentum.runtime as rt_mod
    from momentum.engine.logging import shutdown_logging

    cfg_mod._config = None
    yield
    cfg_mod._config = None
    if rt_mod._runtime is not None:
        rt_mod._runtime.shutdown()
        rt_mod._runtime = None
    shutdown_logging()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    from momentum.db.session import close_all_sessions, init_db

    factory = init_db("sqlite://", create_tables=True)
    yield factory
    close_all_sessions()


@pytest.fixture
def teams():
    """Team "t1" (Home): owner, admin, alice, bob. carol belongs to no team."""
    from momentum.teams.directory import InMemoryTeamDirectory

    directory = InMemoryTeamDirectory()
    directory.add_team("t1", "Home")
    directory.add_member("t1", "owner", "owner")
    directory.add_member("t1", "admin", "admin")
    directory.add_member("t1", "alice", "member")
    directory.add_member("t1", "bob", "member")
    return directory


@pytest.fixture
def notifier():
    from momentum.integrations.notifications import NotificationService

    return MagicMock(spec=NotificationService)


@pytest.fixture
def service(session_factory, teams, notifier, clock):
    from momentum.tasks.service import TaskService

    return TaskService(session_factory, teams, notifier=notifier, clock=clock)


@pytest.fixture
def pipeline(session_factory, clock):
    from momentum.process.cleanup import CleanupPipeline

    return CleanupPipeline(session_factory, clock=clock)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_task(session_factory):
    """Insert a Task row directly, bypassing the service. Returns its id."""
    from momentum.db.models import Task
    from momentum.db.session import session_scope

    def _make(**fields: Any) -> str:
        fields.setdefault("name", "Task")
        fields.setdefault("assignees", ["alice"])
        fields.setdefault("assigned_by", fields["assignees"][0])
        fields.setdefault("completed_days", [])
        fields.setdefault("is_archived", False)
        with session_scope(session_factory) as session:
            task = Task(**fields)
            session.add(task)
            session.flush()
            return task.id

    return _make


@pytest.fixture
def load_task(session_factory):
    """Fetch a Task (detached, fully loaded) or None."""
    from momentum.db.models import Task
    from momentum.db.session import session_scope

    def _load(task_id: str):
        with session_scope(session_factory) as session:
            return session.get(Task, task_id)

    return _load


@pytest.fixture
def load_history(session_factory):
    """Fetch the (user, task name) history record's days, or None."""
    from momentum.db.session import session_scope
    from momentum.history.store import HistoryStore

    def _load(user_id: str, task_name: str):
        with session_scope(session_factory) as session:
            record = HistoryStore(session).get(user_id, task_name)
            return list(record.completed_days) if record else None

    return _load


def at(day: date, hour: int = 0, minute: int = 0, second: int = 0, microsecond: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, microsecond, tzinfo=timezone.utc)
