"""
Momentum Runtime — composition root.

Builds every collaborator once from ``ServiceConfig`` and hands them to the
services that need them:

    log queue -> database -> team directory -> notification service
              -> TaskService / CleanupPipeline / DueDateReminders

The HTTP app, the CLI and the Celery tasks all work through one runtime.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import redis
from sqlalchemy.orm import sessionmaker

from momentum.db.base import engine_registry
from momentum.db.session import ENGINE_NAME, close_all_sessions, init_db
from momentum.engine.clock import Clock, utc_now
from momentum.engine.config import ServiceConfig, get_config
from momentum.engine.logging import AsyncLogQueue, init_logging, log, log_system_event, shutdown_logging
from momentum.integrations.notifications import NotificationService
from momentum.process.cleanup import CleanupPipeline
from momentum.process.reminders import DueDateReminders
from momentum.tasks.service import TaskService
from momentum.teams.directory import InMemoryTeamDirectory, TeamDirectory

logger = logging.getLogger("momentum.runtime")


class MomentumRuntime:
    """
    Lifecycle:
        runtime = MomentumRuntime(config)
        runtime.startup()
        runtime.tasks.create_task(...)
        runtime.shutdown()

    Any collaborator may be injected (tests pass an in-memory session
    factory, a fixed clock, a mock notifier).
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        session_factory: Optional[sessionmaker] = None,
        teams: Optional[TeamDirectory] = None,
        notifier: Optional[NotificationService] = None,
        redis_client: Optional[Any] = None,
        clock: Clock = utc_now,
    ):
        self.config = config or get_config()
        self.session_factory = session_factory
        self.teams = teams
        self.notifier = notifier
        self.redis_client = redis_client
        self.clock = clock

        self.log_queue: Optional[AsyncLogQueue] = None
        self.tasks: Optional[TaskService] = None
        self.cleanup: Optional[CleanupPipeline] = None
        self.reminders: Optional[DueDateReminders] = None

        self._owns_db = False
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def startup(self) -> None:
        if self._started:
            logger.warning("Runtime already started")
            return

        config = self.config
        logging.getLogger("momentum").setLevel(config.logging.level)
        logger.info(f"Starting {config.name} ({config.environment})...")

        # 1. Structured log queue
        self.log_queue = init_logging(
            log_dir=config.logging.directory,
            flush_interval_ms=config.logging.flush_interval_ms,
            flush_batch_size=config.logging.flush_batch_size,
            max_queue_size=config.logging.max_queue_size,
        )

        # 2. Database
        self._owns_db = self.session_factory is None
        if self._owns_db:
            db = config.database
            self.session_factory = init_db(
                db.url,
                create_tables=db.create_tables,
                pool_size=db.pool_size,
                max_overflow=db.max_overflow,
                pool_timeout=db.pool_timeout,
                pool_recycle=db.pool_recycle,
                pool_pre_ping=db.pool_pre_ping,
            )

        # 3. Collaborators
        if self.teams is None:
            self.teams = InMemoryTeamDirectory.from_config(config.teams)
        if self.notifier is None:
            self.notifier = NotificationService(config.notifications)
        self.notifier.init()

        if config.cleanup.use_redis_lock and self.redis_client is None:
            try:
                self.redis_client = redis.Redis.from_url(config.redis.url)
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable, cleanup uses the in-process lock only: {e}")

        # 4. Services
        self.tasks = TaskService(
            self.session_factory,
            self.teams,
            notifier=self.notifier,
            clock=self.clock,
            completion_retries=config.tasks.completion_retries,
        )
        self.cleanup = CleanupPipeline(
            self.session_factory,
            clock=self.clock,
            redis_client=self.redis_client if config.cleanup.use_redis_lock else None,
            lock_ttl_seconds=config.cleanup.lock_ttl_seconds,
        )
        self.reminders = DueDateReminders(
            self.session_factory,
            self.notifier,
            teams=self.teams,
            clock=self.clock,
            settle_timeout=config.notifications.timeout * 2,
        )

        self._started = True
        log(log_system_event("runtime_started", details=self.status()))
        logger.info("Momentum runtime started")

    def shutdown(self) -> None:
        if not self._started:
            return
        logger.info("Shutting down Momentum runtime...")

        if self.notifier is not None:
            self.notifier.shutdown()

        log(log_system_event("runtime_shutdown"))
        shutdown_logging()
        self.log_queue = None

        if self._owns_db:
            close_all_sessions()
        self._started = False
        logger.info("Momentum runtime shut down")

    def status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "environment": self.config.environment,
            "database": None,
            "notifications": self.notifier.is_ready() if self.notifier else False,
            "cleanup_running": self.cleanup.is_running if self.cleanup else False,
            "log_queue": None,
        }
        if ENGINE_NAME in engine_registry.registered_names:
            status["database"] = engine_registry.health_check(ENGINE_NAME)
        if self.log_queue:
            status["log_queue"] = {
                "pending": self.log_queue.pending_count,
                "dropped": self.log_queue.dropped_count,
            }
        return status


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_runtime: Optional[MomentumRuntime] = None


def get_runtime() -> MomentumRuntime:
    """
    Get the global runtime.

    Raises RuntimeError if init_runtime() has not been called.
    """
    if _runtime is None:
        raise RuntimeError("Momentum runtime not initialized. Call init_runtime() first.")
    return _runtime


def init_runtime(**kwargs: Any) -> MomentumRuntime:
    """Create the global runtime (not started). kwargs go to MomentumRuntime()."""
    global _runtime
    _runtime = MomentumRuntime(**kwargs)
    return _runtime


def reset_runtime() -> None:
    global _runtime
    if _runtime is not None:
        _runtime.shutdown()
    _runtime = None
