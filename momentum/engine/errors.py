"""
Momentum Error Hierarchy — Structured exceptions for the task lifecycle.

Every error carries a message plus arbitrary context kwargs and serializes
to JSON so the same object can be logged, returned from the HTTP surface and
stored in cleanup results.

Hierarchy:
    MomentumError
    ├── ValidationError          — Missing / invalid input (400)
    ├── NotFoundError            — Task, team or record absent (404)
    ├── ForbiddenError           — Authorization failure (403)
    │   └── NotAssigneeError     — Actor is not an assignee of the task
    ├── AuthenticationError      — No acting user on the request (401)
    ├── ConflictError            — Duplicate / concurrent modification (409)
    ├── DependencyFailureError   — Notification or history-merge failure (502)
    ├── ConfigError              — Invalid momentum.yaml (500)
    └── InternalError            — Unexpected failure (500)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class MomentumError(Exception):
    """
    Base error for all Momentum failures.
    All context is JSON-serializable for logging and API responses.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.task_id: Optional[str] = context.get("task_id")
        self.user_id: Optional[str] = context.get("user_id")
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("task_id", "user_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.task_id:
            parts.append(f"task_id={self.task_id}")
        if self.user_id:
            parts.append(f"user_id={self.user_id}")
        return " | ".join(parts)


class ValidationError(MomentumError):
    """
    Input validation failed (pydantic record, team assignee check, etc.).
    Includes field-level error details when available.
    """

    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[List[Any]] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class NotFoundError(MomentumError):
    """Task, team or history record does not exist."""

    status_code = 404

    def __init__(self, message: str, **context: Any):
        self.record_type: Optional[str] = context.get("record_type")
        self.record_id: Optional[str] = context.get("record_id")
        super().__init__(message, **context)


class ForbiddenError(MomentumError):
    """
    Access denied. Kept distinct from NotFoundError so callers get
    actionable feedback.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["required_permission"] = self.required_permission
        return d


class NotAssigneeError(ForbiddenError):
    """Completion toggles are restricted to the task's assignees."""
    pass


class AuthenticationError(MomentumError):
    """The request carries no acting user."""

    status_code = 401


class ConflictError(MomentumError):
    """Duplicate resource or an update lost to a concurrent writer."""

    status_code = 409


class DependencyFailureError(MomentumError):
    """
    External collaborator failed (notification delivery, history merge).
    Always logged; never turns a successful core operation into a failure.
    """

    status_code = 502

    def __init__(self, message: str, **context: Any):
        self.dependency: Optional[str] = context.get("dependency")
        self.status: Optional[int] = context.get("status")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["dependency"] = self.dependency
        d["status"] = self.status
        return d


class ConfigError(MomentumError):
    """Configuration error — invalid momentum.yaml."""
    pass


class InternalError(MomentumError):
    """Unexpected failure."""
    pass
