"""
Archival Pipeline — the daily archive / delete / prune batch.

Stages (each retry-safe, each logged with its own timing):

1. archive   Active tasks whose last completion is before today become
             Archived (archived_at = now). One bulk UPDATE.
2. delete    Tasks archived before today's start: merge their completion
             days into history, then hard-delete. One transaction per task;
             a failed history merge keeps the task for the next run.
3. prune     Every remaining task: completion days (and per-assignee marks)
             before today move into history; today-or-later days stay.

So a task completed on day X is archived by day X's Complete, stays listed
for the rest of day X and is removed by the first run on day X+1. History
merges are idempotent, so a task processed twice (overlapping runs, a retry
after a crash) does not duplicate days.

``run()`` never raises: unattended callers (Celery Beat, the admin
endpoint, the CLI) always get a CleanupResult or a CleanupFailure.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from redis.exceptions import LockError
from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from momentum.db.models import Task
from momentum.db.session import session_scope
from momentum.engine.clock import Clock, as_utc, day_of, start_of_day, utc_now
from momentum.engine.logging import log, log_cleanup_run, log_cleanup_stage
from momentum.history.store import HistoryStore

logger = logging.getLogger("momentum.process.cleanup")

STAGES = ("archive", "delete", "prune")
LOCK_NAME = "momentum:cleanup:lock"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class CleanupResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    archived_count: int = Field(default=0, alias="archivedCount")
    deleted_count: int = Field(default=0, alias="deletedCount")
    cleaned_count: int = Field(default=0, alias="cleanedCount")
    failed_count: int = Field(default=0, alias="failedCount")
    stage_errors: Dict[str, str] = Field(default_factory=dict, alias="stageErrors")
    processed_date: str = Field(alias="processedDate")
    timestamp: str
    status: Literal["completed"] = "completed"

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CleanupFailure(BaseModel):
    error: str
    timestamp: str
    status: Literal["failed", "skipped"] = "failed"

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


RunOutcome = Union[CleanupResult, CleanupFailure]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class CleanupPipeline:
    """
    Usage:
        pipeline = CleanupPipeline(session_factory)
        outcome = pipeline.run(triggered_by="schedule")
        outcome.to_dict()

    Only one run at a time per process (non-blocking lock). Pass a redis
    client to also hold a cluster-wide lock for the duration of the run.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = utc_now,
        redis_client: Optional[Any] = None,
        lock_ttl_seconds: int = 3600,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._redis = redis_client
        self._lock_ttl = lock_ttl_seconds
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    def run(self, triggered_by: str = "manual") -> RunOutcome:
        try:
            now = as_utc(self._clock())
        except Exception as e:
            logger.exception(f"Daily cleanup could not read the clock: {e}")
            return self._finish(CleanupFailure(error=str(e), timestamp=utc_now().isoformat()), triggered_by)
        timestamp = now.isoformat()

        if not self._run_lock.acquire(blocking=False):
            logger.warning("Cleanup already running in this process, skipping")
            return self._finish(
                CleanupFailure(error="Cleanup already in progress", timestamp=timestamp, status="skipped"),
                triggered_by,
            )

        try:
            distributed = self._acquire_distributed_lock()
            if distributed is False:
                logger.warning("Cleanup lock held by another worker, skipping")
                outcome: RunOutcome = CleanupFailure(
                    error="Cleanup already in progress on another worker",
                    timestamp=timestamp,
                    status="skipped",
                )
            else:
                try:
                    outcome = self._run_stages(now)
                finally:
                    self._release_distributed_lock(distributed)
        except Exception as e:
            logger.exception(f"Daily cleanup failed: {e}")
            outcome = CleanupFailure(error=str(e), timestamp=timestamp)
        finally:
            self._run_lock.release()

        return self._finish(outcome, triggered_by)

    def _acquire_distributed_lock(self) -> Union[Any, bool, None]:
        """
        Redis lock when configured. Returns the held lock, False when another
        worker holds it, or None when no redis client is set.
        """
        if self._redis is None:
            return None
        lock = self._redis.lock(LOCK_NAME, timeout=self._lock_ttl)
        if not lock.acquire(blocking=False):
            return False
        return lock

    def _release_distributed_lock(self, lock: Union[Any, bool, None]) -> None:
        if not lock:
            return
        try:
            lock.release()
        except LockError as e:
            # Expired after lock_ttl_seconds; the run finished anyway
            logger.warning(f"Cleanup lock could not be released: {e}")

    def _finish(self, outcome: RunOutcome, triggered_by: str) -> RunOutcome:
        log(log_cleanup_run(outcome.to_dict(), triggered_by))
        return outcome

    def _run_stages(self, now: datetime) -> RunOutcome:
        today = day_of(now)
        logger.info(f"Starting daily task cleanup for {today.isoformat()}")

        counts = {"archive": 0, "delete": 0, "prune": 0}
        failed = 0
        stage_errors: Dict[str, str] = {}
        stage_fns = {
            "archive": lambda: (self.archive_completed(now), 0),
            "delete": lambda: self.delete_archived(now),
            "prune": lambda: self.prune_completions(now),
        }

        for stage in STAGES:
            start = time.perf_counter()
            try:
                counts[stage], stage_failed = stage_fns[stage]()
                failed += stage_failed
                log(log_cleanup_stage(stage, counts[stage], stage_failed,
                                      (time.perf_counter() - start) * 1000))
            except Exception as e:
                logger.exception(f"Cleanup stage '{stage}' failed: {e}")
                stage_errors[stage] = str(e)
                log(log_cleanup_stage(stage, 0, 0, (time.perf_counter() - start) * 1000, error=str(e)))

        if len(stage_errors) == len(STAGES):
            return CleanupFailure(
                error="; ".join(f"{s}: {msg}" for s, msg in stage_errors.items()),
                timestamp=now.isoformat(),
            )

        result = CleanupResult(
            archived_count=counts["archive"],
            deleted_count=counts["delete"],
            cleaned_count=counts["prune"],
            failed_count=failed,
            stage_errors=stage_errors,
            processed_date=today.isoformat(),
            timestamp=now.isoformat(),
        )
        logger.info(
            f"Daily cleanup completed: archived={result.archived_count} deleted={result.deleted_count} "
            f"cleaned={result.cleaned_count} failed={result.failed_count}"
        )
        return result

    # -----------------------------------------------------------------------
    # Stage 1: archive
    # -----------------------------------------------------------------------

    def archive_completed(self, now: Optional[datetime] = None) -> int:
        """Archive Active tasks last completed before today. Returns rows changed."""
        now = as_utc(now or self._clock())
        tasks = Task.__table__
        stmt = (
            update(tasks)
            .where(tasks.c.is_archived.is_(False), tasks.c.last_completed_date < day_of(now))
            .values(
                is_archived=True,
                archived_at=now,
                updated_at=now,
                version=tasks.c.version + 1,
            )
        )
        with session_scope(self._session_factory) as session:
            archived = session.execute(stmt).rowcount or 0
        logger.info(f"Archived {archived} tasks completed before {day_of(now).isoformat()}")
        return archived

    # -----------------------------------------------------------------------
    # Stage 2: delete and preserve
    # -----------------------------------------------------------------------

    def delete_archived(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Delete tasks archived before today's start. Returns (deleted, failed)."""
        now = as_utc(now or self._clock())
        cutoff = start_of_day(day_of(now))

        with session_scope(self._session_factory) as session:
            task_ids = list(session.execute(
                select(Task.id).where(Task.is_archived.is_(True), Task.archived_at < cutoff)
            ).scalars())
        logger.info(f"Found {len(task_ids)} archived tasks to delete (archived before {cutoff.isoformat()})")

        deleted = failed = 0
        for task_id in task_ids:
            try:
                if self._delete_one(task_id, cutoff):
                    deleted += 1
            except StaleDataError:
                logger.warning(f"Task {task_id} changed while being deleted, leaving it for the next run")
                failed += 1
            except Exception as e:
                logger.error(f"Error deleting archived task {task_id}: {e}")
                failed += 1
        return deleted, failed

    def _delete_one(self, task_id: str, cutoff: datetime) -> bool:
        with session_scope(self._session_factory) as session:
            task = session.get(Task, task_id)
            # Gone, or un-archived / re-archived since the candidate query
            if task is None or not task.is_archived or task.archived_at is None or task.archived_at >= cutoff:
                return False
            report = HistoryStore(session).merge_task(task, source="cleanup")
            if not report.ok:
                raise report.failures[0]
            session.delete(task)
        logger.debug(f"Deleted archived task {task_id} ('{task.name}')")
        return True

    # -----------------------------------------------------------------------
    # Stage 3: prune past completion days
    # -----------------------------------------------------------------------

    def prune_completions(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Move completion days before today into history. Returns (cleaned, failed)."""
        now = as_utc(now or self._clock())

        with session_scope(self._session_factory) as session:
            task_ids: List[str] = list(session.execute(select(Task.id)).scalars())

        cleaned = failed = 0
        for task_id in task_ids:
            try:
                if self._prune_one(task_id, now):
                    cleaned += 1
            except StaleDataError:
                logger.warning(f"Task {task_id} changed while being pruned, leaving it for the next run")
                failed += 1
            except Exception as e:
                logger.error(f"Error cleaning task {task_id}: {e}")
                failed += 1
        logger.info(f"Cleaned old completion days from {cleaned} tasks")
        return cleaned, failed

    def _prune_one(self, task_id: str, now: datetime) -> bool:
        today = day_of(now)
        with session_scope(self._session_factory) as session:
            task = session.get(Task, task_id)
            if task is None:
                return False
            days = task.completed_days or []
            past = [d for d in days if d < today]
            stale_marks = [c for c in task.completions if c.completed_on < today]
            if not past and not stale_marks:
                return False

            if past:
                report = HistoryStore(session).merge_task(task, past, source="prune")
                if not report.ok:
                    raise report.failures[0]
                task.completed_days = [d for d in days if d >= today]
            for mark in stale_marks:
                task.completions.remove(mark)
            task.updated_at = now
        return True
