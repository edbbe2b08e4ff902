"""
Momentum Scheduler — Celery app and Celery Beat entries for the daily jobs.

    momentum.process.run_daily_cleanup        cleanup.schedule   (default "5 0 * * *")
    momentum.process.send_due_date_reminders  reminders.schedule (default "0 9 * * *")

Cron strings are read from momentum.yaml and always evaluated in UTC.
Task bodies resolve the runtime lazily so importing this module never
touches the database.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import Celery
from celery.schedules import crontab

from momentum.engine.config import ServiceConfig, get_config
from momentum.engine.errors import ConfigError

logger = logging.getLogger("momentum.process.scheduler")

CLEANUP_TASK = "momentum.process.run_daily_cleanup"
REMINDERS_TASK = "momentum.process.send_due_date_reminders"


def parse_cron(expr: str) -> crontab:
    """Five-field cron string -> celery crontab."""
    parts = expr.strip().split()
    if len(parts) != 5:
        raise ConfigError(f"Invalid cron expression '{expr}': expected 5 fields")
    return crontab(
        minute=parts[0],
        hour=parts[1],
        day_of_month=parts[2],
        month_of_year=parts[3],
        day_of_week=parts[4],
    )


def build_beat_schedule(config: ServiceConfig) -> Dict[str, Any]:
    """Beat entries for the enabled jobs."""
    beat_schedule: Dict[str, Any] = {}
    queue = config.celery.queue

    if config.cleanup.enabled:
        beat_schedule["daily-task-cleanup"] = {
            "task": CLEANUP_TASK,
            "schedule": parse_cron(config.cleanup.schedule),
            "options": {"queue": queue},
        }
    if config.reminders.enabled:
        beat_schedule["due-date-reminders"] = {
            "task": REMINDERS_TASK,
            "schedule": parse_cron(config.reminders.schedule),
            "options": {"queue": queue},
        }

    for name, entry in beat_schedule.items():
        logger.debug(f"Celery Beat schedule: {name} -> {entry['task']}")
    return beat_schedule


# ---------------------------------------------------------------------------
# Celery app
# ---------------------------------------------------------------------------

_celery_app: Optional[Celery] = None


def create_celery_app(config: Optional[ServiceConfig] = None) -> Celery:
    config = config or get_config()
    app = Celery("momentum", broker=config.celery.broker, backend=config.celery.result_backend)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_default_queue=config.celery.queue,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
    )
    app.conf.beat_schedule = build_beat_schedule(config)
    _register_tasks(app)
    return app


def _register_tasks(app: Celery) -> None:
    @app.task(name=CLEANUP_TASK)
    def run_daily_cleanup() -> Dict[str, Any]:
        """Beat entry point for the archival pipeline. Never raises."""
        from momentum.runtime import get_runtime
        outcome = get_runtime().cleanup.run(triggered_by="schedule")
        logger.info(f"Scheduled cleanup finished with status '{outcome.status}'")
        return outcome.to_dict()

    @app.task(name=REMINDERS_TASK)
    def send_due_date_reminders() -> Dict[str, Any]:
        from momentum.runtime import get_runtime
        try:
            sent = get_runtime().reminders.run()
        except Exception as e:
            logger.error(f"Scheduled due date reminders failed: {e}")
            return {"error": str(e), "status": "failed"}
        return {"notificationsSent": sent, "status": "completed"}


def get_celery_app() -> Celery:
    global _celery_app
    if _celery_app is None:
        _celery_app = create_celery_app()
    return _celery_app


def init_scheduler(config: Optional[ServiceConfig] = None) -> Celery:
    """(Re)build the global Celery app from *config*."""
    global _celery_app
    _celery_app = create_celery_app(config)
    logger.info(f"Applied {len(_celery_app.conf.beat_schedule)} Celery Beat schedules")
    return _celery_app
