"""
Momentum Event Logging — Structured JSONL event files with an async queue.

Implements:
- FileLogger: per-object-type, per-category files rotated daily
  (logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl)
- AsyncLogQueue: non-blocking push, background flush every
  flush_interval_ms or flush_batch_size entries
- Entry builders for task transitions, history merges, cleanup runs,
  notifications, API requests and system events

Operational messages still go through stdlib ``logging`` loggers named
``momentum.*``; this module is for the audit-style event trail.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("momentum.engine.logging")

# Object types and the categories each may write to
OBJECT_TYPE_CATEGORIES = {
    "tasks": ["execution", "security"],
    "history": ["execution"],
    "cleanup": ["execution", "performance"],
    "notifications": ["execution"],
    "web_apis": ["execution", "security"],
    "system": ["execution"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        if category not in OBJECT_TYPE_CATEGORIES.get(object_type, ()):
            raise ValueError(f"Unknown log target {object_type}/{category}")
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends JSON lines to the file for today's date.
    Thread-safe: one lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Group entries by target file and append each group under its lock."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self._resolve_path(entry.object_type, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    f.writelines(e.to_json() + "\n" for e in batch)

    def _resolve_path(self, object_type: str, category: str) -> Path:
        return self._log_dir / object_type / category / f"{datetime.now(timezone.utc).date().isoformat()}.jsonl"

    def query(
        self,
        object_type: str,
        category: str,
        *,
        days: int = 7,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read back entries of the last *days* days, newest file first.

        Args:
            filters: exact-match on top-level keys; all must match.
        """
        base = self._log_dir / object_type / category
        results: List[Dict[str, Any]] = []
        current = datetime.now(timezone.utc).date()
        oldest = current - timedelta(days=days)
        while current >= oldest and len(results) < limit:
            path = base / f"{current.isoformat()}.jsonl"
            if path.exists():
                results.extend(_read_jsonl(path, filters, limit - len(results)))
            current -= timedelta(days=1)
        return results


def _read_jsonl(
    path: Path,
    filters: Optional[Dict[str, Any]],
    remaining: int,
) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if filters and not all(data.get(k) == v for k, v in filters.items()):
                    continue
                entries.append(data)
                if len(entries) >= remaining:
                    break
    except OSError as exc:
        logger.warning("Could not read log file %s: %s", path, exc)
    return entries


class AsyncLogQueue:
    """
    In-memory queue drained by a daemon thread into a FileLogger.
    push() never blocks; entries are dropped (and counted) when full.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="momentum-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain what is left."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except Exception as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval
        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except Exception as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log entry builders
# ---------------------------------------------------------------------------

def _base_entry(event: str, level: str, **extra: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def log_task_event(
    event: str,
    task_id: str,
    user_id: Optional[str] = None,
    task_name: Optional[str] = None,
    is_archived: Optional[bool] = None,
    day: Optional[date] = None,
    fields_changed: Optional[List[str]] = None,
) -> LogEntry:
    """Task lifecycle event: created / completed / uncompleted / updated / deleted."""
    data = _base_entry(
        event=f"task_{event}",
        level="INFO",
        task_id=task_id,
        user_id=user_id,
        task_name=task_name,
        is_archived=is_archived,
        day=day.isoformat() if day else None,
        fields_changed=fields_changed,
    )
    return LogEntry("tasks", "execution", data)


def log_access_denied(
    task_id: Optional[str],
    user_id: str,
    operation: str,
    reason: str,
) -> LogEntry:
    data = _base_entry(
        event="access_denied",
        level="WARNING",
        task_id=task_id,
        user_id=user_id,
        operation=operation,
        reason=reason,
    )
    return LogEntry("tasks", "security", data)


def log_history_merge(
    user_id: str,
    task_name: str,
    merged_days: int,
    total_days: int,
    source: str,
    created: bool = False,
) -> LogEntry:
    data = _base_entry(
        event="history_merged",
        level="INFO",
        user_id=user_id,
        task_name=task_name,
        merged_days=merged_days,
        total_days=total_days,
        source=source,
        created=created,
    )
    return LogEntry("history", "execution", data)


def log_cleanup_stage(
    stage: str,
    count: int,
    failed: int,
    duration_ms: float,
    error: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event=f"cleanup_{stage}",
        level="ERROR" if error else "INFO",
        stage=stage,
        count=count,
        failed=failed,
        duration_ms=round(duration_ms, 2),
        error=error,
    )
    return LogEntry("cleanup", "performance", data)


def log_cleanup_run(result: Dict[str, Any], triggered_by: str) -> LogEntry:
    level = "INFO" if result.get("status") == "completed" else "ERROR"
    data = _base_entry(
        event="cleanup_run",
        level=level,
        triggered_by=triggered_by,
        result=result,
    )
    return LogEntry("cleanup", "execution", data)


def log_notification(
    recipient: str,
    notification_type: str,
    success: bool,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event="notification_sent" if success else "notification_failed",
        level="INFO" if success else "ERROR",
        recipient=recipient,
        notification_type=notification_type,
        status_code=status_code,
        duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
        error=error,
    )
    return LogEntry("notifications", "execution", data)


def log_web_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event="web_api_request",
        level="INFO" if status_code < 400 else "ERROR",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
        user_id=user_id,
    )
    return LogEntry("web_apis", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Startup, shutdown, scheduler registration."""
    return LogEntry("system", "execution", _base_entry(event=event, level=level, details=details))


# ---------------------------------------------------------------------------
# Global log queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize and start the global async log queue."""
    global _global_queue
    if _global_queue is not None:
        return _global_queue
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push an entry to the global queue. Non-blocking; dropped when not initialized."""
    if _global_queue is None:
        logger.debug(f"Log queue not initialized, dropping {entry.data.get('event')}")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
