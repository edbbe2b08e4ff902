"""Unit tests for momentum.process.scheduler — cron parsing, Beat entries, task bodies."""

from unittest.mock import MagicMock, patch

import pytest
from celery.schedules import crontab

from momentum.engine.config import CleanupConfig, RemindersConfig, ServiceConfig
from momentum.engine.errors import ConfigError
from momentum.process.cleanup import CleanupFailure, CleanupResult
from momentum.process.scheduler import (
    CLEANUP_TASK,
    REMINDERS_TASK,
    build_beat_schedule,
    create_celery_app,
    parse_cron,
)


class TestParseCron:
    def test_five_fields(self):
        schedule = parse_cron("5 0 * * *")
        assert isinstance(schedule, crontab)
        assert schedule.minute == {5}
        assert schedule.hour == {0}

    def test_invalid(self):
        with pytest.raises(ConfigError):
            parse_cron("every day")


class TestBeatSchedule:
    def test_default_entries(self):
        schedule = build_beat_schedule(ServiceConfig())
        assert set(schedule) == {"daily-task-cleanup", "due-date-reminders"}
        assert schedule["daily-task-cleanup"]["task"] == CLEANUP_TASK
        assert schedule["due-date-reminders"]["task"] == REMINDERS_TASK
        assert schedule["daily-task-cleanup"]["options"] == {"queue": "scheduled"}

    def test_disabled_jobs_omitted(self):
        config = ServiceConfig(
            cleanup=CleanupConfig(enabled=False),
            reminders=RemindersConfig(schedule="30 8 * * 1-5"),
        )
        schedule = build_beat_schedule(config)
        assert list(schedule) == ["due-date-reminders"]
        assert schedule["due-date-reminders"]["schedule"].hour == {8}


class TestCeleryApp:
    def setup_method(self):
        self.app = create_celery_app(ServiceConfig())

    def test_utc_and_json(self):
        assert self.app.conf.timezone == "UTC"
        assert self.app.conf.enable_utc is True
        assert self.app.conf.task_serializer == "json"
        assert "daily-task-cleanup" in self.app.conf.beat_schedule

    def test_tasks_registered(self):
        assert CLEANUP_TASK in self.app.tasks
        assert REMINDERS_TASK in self.app.tasks

    def test_cleanup_task_returns_result_dict(self):
        runtime = MagicMock()
        runtime.cleanup.run.return_value = CleanupResult(
            archived_count=2, processed_date="2026-10-16", timestamp="2026-10-16T00:05:00+00:00",
        )
        with patch("momentum.runtime.get_runtime", return_value=runtime):
            result = self.app.tasks[CLEANUP_TASK]()
        runtime.cleanup.run.assert_called_once_with(triggered_by="schedule")
        assert result["archivedCount"] == 2
        assert result["status"] == "completed"

    def test_cleanup_task_passes_failure_through(self):
        runtime = MagicMock()
        runtime.cleanup.run.return_value = CleanupFailure(error="db down", timestamp="t")
        with patch("momentum.runtime.get_runtime", return_value=runtime):
            result = self.app.tasks[CLEANUP_TASK]()
        assert result == {"error": "db down", "timestamp": "t", "status": "failed"}

    def test_reminders_task(self):
        runtime = MagicMock()
        runtime.reminders.run.return_value = 3
        with patch("momentum.runtime.get_runtime", return_value=runtime):
            assert self.app.tasks[REMINDERS_TASK]() == {"notificationsSent": 3, "status": "completed"}

    def test_reminders_task_failure(self):
        runtime = MagicMock()
        runtime.reminders.run.side_effect = RuntimeError("db down")
        with patch("momentum.runtime.get_runtime", return_value=runtime):
            assert self.app.tasks[REMINDERS_TASK]() == {"error": "db down", "status": "failed"}
