"""Unit tests for momentum.engine.logging — FileLogger, AsyncLogQueue, entry builders."""

import json
from datetime import date, datetime, timezone

import pytest

from momentum.engine.logging import (
    OBJECT_TYPE_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    get_log_queue,
    init_logging,
    log,
    log_access_denied,
    log_cleanup_run,
    log_cleanup_stage,
    log_notification,
    log_task_event,
    shutdown_logging,
)


class TestLogEntry:
    def test_to_json(self):
        entry = LogEntry("tasks", "execution", {"task_id": "t-1", "day": date(2026, 10, 16)})
        assert json.loads(entry.to_json()) == {"task_id": "t-1", "day": "2026-10-16"}

    def test_unknown_target_rejected(self):
        with pytest.raises(ValueError):
            LogEntry("tasks", "performance", {})


class TestFileLogger:
    def test_creates_category_dirs(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                assert (tmp_path / obj_type / cat).is_dir()

    def test_write_and_query(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write_batch([
            log_task_event("created", "t-1", user_id="alice"),
            log_task_event("completed", "t-1", user_id="bob"),
            log_access_denied("t-1", "carol", "complete", "not an assignee"),
        ])

        today = datetime.now(timezone.utc).date().isoformat()
        assert (tmp_path / "tasks" / "execution" / f"{today}.jsonl").exists()

        entries = fl.query("tasks", "execution", filters={"user_id": "bob"})
        assert [e["event"] for e in entries] == ["task_completed"]
        denied = fl.query("tasks", "security")
        assert denied[0]["level"] == "WARNING"

    def test_query_skips_corrupt_lines(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        today = datetime.now(timezone.utc).date().isoformat()
        path = tmp_path / "system" / "execution" / f"{today}.jsonl"
        path.write_text('{"event": "ok"}\nnot json\n\n', encoding="utf-8")
        assert fl.query("system", "execution") == [{"event": "ok"}]


class TestAsyncLogQueue:
    def test_stop_drains(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        queue = AsyncLogQueue(fl, flush_interval_ms=10)
        queue.start()
        for i in range(5):
            queue.push(log_task_event("created", f"t-{i}"))
        queue.stop()
        assert queue.pending_count == 0
        assert len(fl.query("tasks", "execution")) == 5

    def test_full_queue_drops(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=1)
        assert queue.push(log_task_event("created", "t-1")) is True
        assert queue.push(log_task_event("created", "t-2")) is False
        assert queue.dropped_count == 1


class TestGlobalQueue:
    def test_log_without_init_is_dropped(self):
        assert get_log_queue() is None
        assert log(log_task_event("created", "t-1")) is False

    def test_init_is_idempotent(self, tmp_path):
        first = init_logging(log_dir=str(tmp_path))
        assert init_logging(log_dir=str(tmp_path / "other")) is first
        assert log(log_task_event("created", "t-1")) is True
        shutdown_logging()
        assert get_log_queue() is None


class TestBuilders:
    def test_cleanup_stage_error_level(self):
        ok = log_cleanup_stage("archive", 3, 0, 12.345)
        failed = log_cleanup_stage("delete", 0, 0, 1.0, error="db down")
        assert ok.data["level"] == "INFO"
        assert ok.data["duration_ms"] == 12.35
        assert "error" not in ok.data
        assert failed.data["level"] == "ERROR"
        assert (failed.object_type, failed.category) == ("cleanup", "performance")

    def test_cleanup_run_level_follows_status(self):
        assert log_cleanup_run({"status": "completed"}, "schedule").data["level"] == "INFO"
        assert log_cleanup_run({"status": "skipped"}, "manual").data["level"] == "ERROR"

    def test_notification(self):
        entry = log_notification("bob", "task_assigned", success=False, status_code=503, error="boom")
        assert entry.data["event"] == "notification_failed"
        assert entry.data["status_code"] == 503
