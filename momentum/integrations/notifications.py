"""
Notification collaborator client.

Delivery (push, in-app) belongs to a separate service; Momentum only POSTs
one JSON document per recipient:

    POST {base_url}/api/v1/notifications
    X-API-Key: <api_key>
    {"recipient": ..., "type": ..., "title": ..., "body": ..., "data": {...}}

Calls are fire-and-forget: ``notify()`` hands the request to a bounded
thread pool and returns a Future immediately. ``notify_many()`` returns a
``NotificationBatch`` that callers may ``settle()`` to wait for every
delivery to finish, success or failure, without one failure aborting the
rest.

The service is constructed explicitly and must be ``init()``-ed before use;
until then (or when disabled in config) every notification resolves as
undelivered.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional

import httpx

from momentum.db.models import Task
from momentum.engine.config import NotificationsConfig
from momentum.engine.errors import DependencyFailureError
from momentum.engine.logging import log, log_notification

logger = logging.getLogger("momentum.integrations.notifications")

NOTIFICATION_TYPES = ("task_assigned", "task_completed", "task_due_reminder")
NOTIFICATIONS_PATH = "/api/v1/notifications"


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------

def _team_label(team_name: Optional[str]) -> str:
    return team_name or "Personal"


def task_assigned_message(task: Task, assigner_id: str, team_name: Optional[str] = None) -> Dict[str, Any]:
    label = _team_label(team_name)
    return {
        "title": "New Task Assigned",
        "body": f'{assigner_id} assigned you "{task.name}" in {label}',
        "data": {
            "taskId": task.id,
            "taskName": task.name,
            "assignerId": assigner_id,
            "teamId": task.team_id or "",
            "teamName": label,
            "dueDate": task.due_date.isoformat() if task.due_date else "",
            "priority": task.priority or "medium",
        },
    }


def task_completed_message(task: Task, completer_id: str, team_name: Optional[str] = None) -> Dict[str, Any]:
    label = _team_label(team_name)
    return {
        "title": "Task Completed",
        "body": f'{completer_id} completed "{task.name}" in {label}',
        "data": {
            "taskId": task.id,
            "taskName": task.name,
            "completerId": completer_id,
            "teamId": task.team_id or "",
            "teamName": label,
            "priority": task.priority or "medium",
        },
    }


def task_due_reminder_message(task: Task, team_name: Optional[str] = None) -> Dict[str, Any]:
    label = _team_label(team_name)
    return {
        "title": "Task Due Tomorrow",
        "body": f'Don\'t forget: "{task.name}" in {label} is due tomorrow',
        "data": {
            "taskId": task.id,
            "taskName": task.name,
            "dueDate": task.due_date.isoformat() if task.due_date else "",
            "teamName": label,
            "priority": task.priority or "medium",
            "assignerId": task.assigned_by,
        },
    }


# ---------------------------------------------------------------------------
# Batch handle
# ---------------------------------------------------------------------------

class NotificationBatch:
    """Futures of one fan-out. ``settle()`` waits for all of them."""

    def __init__(self, futures: List[Future]):
        self._futures = futures

    def __len__(self) -> int:
        return len(self._futures)

    def settle(self, timeout: Optional[float] = None) -> Dict[str, int]:
        """
        Wait up to *timeout* seconds for every delivery.

        Returns {"delivered": n, "failed": m}. Deliveries still running at
        the timeout count as failed.
        """
        done, _ = wait(self._futures, timeout=timeout)
        delivered = sum(1 for f in done if f.exception() is None and f.result())
        return {"delivered": delivered, "failed": len(self._futures) - delivered}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class NotificationService:
    """
    httpx client + thread pool for outbound notifications.

    Usage:
        notifier = NotificationService(config.notifications)
        notifier.init()
        notifier.notify("u1", "task_assigned", task_assigned_message(task, "u2"))
        ...
        notifier.shutdown()
    """

    def __init__(self, config: NotificationsConfig, client: Optional[httpx.Client] = None):
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ready = False
        self._lock = threading.Lock()

    def init(self) -> None:
        with self._lock:
            if self._ready:
                return
            if not self._config.enabled:
                logger.info("Notifications disabled in config; sends will be skipped")
                return
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self._config.base_url,
                    timeout=httpx.Timeout(self._config.timeout, connect=min(self._config.timeout, 5.0)),
                )
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.max_workers,
                thread_name_prefix="momentum-notify",
            )
            self._ready = True
        logger.info(f"Notification service ready ({self._config.base_url})")

    def is_ready(self) -> bool:
        return self._ready

    def shutdown(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait_for_pending)
                self._executor = None
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None
            self._ready = False
        logger.info("Notification service shut down")

    # -- sending ------------------------------------------------------------

    def send(self, recipient: str, notification_type: str, message: Dict[str, Any]) -> bool:
        """Deliver one notification synchronously. Returns True on a 2xx answer."""
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type '{notification_type}'")
        if not self._ready or self._client is None:
            logger.debug(f"Notification service not ready, skipping {notification_type} for {recipient}")
            return False

        body = {
            "recipient": recipient,
            "type": notification_type,
            "title": message.get("title", "Momentum Notification"),
            "body": message.get("body", ""),
            "data": {"type": notification_type, **message.get("data", {})},
        }
        headers = {}
        if self._config.api_key:
            headers[self._config.api_key_header] = self._config.api_key

        start = time.perf_counter()
        try:
            response = self._client.post(NOTIFICATIONS_PATH, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            err = DependencyFailureError(
                f"Notification {notification_type} to {recipient} failed: {e}",
                dependency="notifications",
                status=status,
                user_id=recipient,
            )
            logger.warning(repr(err))
            log(log_notification(
                recipient, notification_type, success=False, status_code=status,
                duration_ms=(time.perf_counter() - start) * 1000, error=str(e),
            ))
            return False

        log(log_notification(
            recipient, notification_type, success=True, status_code=response.status_code,
            duration_ms=(time.perf_counter() - start) * 1000,
        ))
        return True

    def notify(self, recipient: str, notification_type: str, message: Dict[str, Any]) -> Future:
        """Queue one notification; never blocks on the network."""
        executor = self._executor
        if not self._ready or executor is None:
            future: Future = Future()
            future.set_result(False)
            return future
        return executor.submit(self.send, recipient, notification_type, message)

    def notify_many(
        self,
        recipients: Iterable[str],
        notification_type: str,
        message: Dict[str, Any],
    ) -> NotificationBatch:
        """Same message to every recipient, each delivered independently."""
        unique = list(dict.fromkeys(recipients))
        logger.info(f"Sending {notification_type} to {len(unique)} recipient(s)")
        return NotificationBatch([self.notify(r, notification_type, message) for r in unique])
