"""
Momentum HTTP API — FastAPI app over the runtime's services.

Authentication happens upstream; the acting user arrives in the
``X-User-Id`` header (missing -> 401). Handlers are plain ``def`` so the
blocking database work runs in FastAPI's thread pool.

Errors are returned as ``{"error": MomentumError.to_dict()}`` with the
error's status code.

Run:
    momentum serve --port 8000
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from momentum import __version__
from momentum.engine.errors import AuthenticationError, MomentumError, ValidationError
from momentum.engine.logging import log, log_web_api_request
from momentum.records.task import CompletionToggle
from momentum.runtime import MomentumRuntime, get_runtime
from momentum.tasks.service import parse_record

logger = logging.getLogger("momentum.api")

CLEANUP_STATUS_CODES = {"completed": 200, "skipped": 409, "failed": 500}

_startup_lock = threading.Lock()


def ensure_started(rt: MomentumRuntime) -> MomentumRuntime:
    """Start *rt* once, even when the first requests arrive concurrently."""
    if not rt.started:
        with _startup_lock:
            if not rt.started:
                rt.startup()
    return rt


def create_app(runtime: Optional[MomentumRuntime] = None) -> FastAPI:
    """
    Build the app. Without *runtime* the global one is used and started on
    first request.
    """
    app = FastAPI(
        title="Momentum",
        description="Task lifecycle and archival service",
        version=__version__,
    )

    def get_rt() -> MomentumRuntime:
        return ensure_started(runtime or get_runtime())

    def current_user(x_user_id: Optional[str] = Header(None)) -> str:
        if not x_user_id or not x_user_id.strip():
            raise AuthenticationError("X-User-Id header is required")
        return x_user_id.strip()

    # -----------------------------------------------------------------------
    # Error handling + request logging
    # -----------------------------------------------------------------------

    @app.exception_handler(MomentumError)
    async def momentum_error_handler(request: Request, exc: MomentumError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        err = ValidationError(
            "Invalid request",
            validation_errors=[
                {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
                for e in exc.errors()
            ],
        )
        return JSONResponse(status_code=err.status_code, content={"error": err.to_dict()})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        log(log_web_api_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - start) * 1000,
            user_id=request.headers.get("x-user-id"),
        ))
        return response

    # -----------------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health(rt: MomentumRuntime = Depends(get_rt)) -> Dict[str, Any]:
        return {"status": "healthy", "version": __version__, **rt.status()}

    @app.post("/api/tasks", status_code=201)
    def create_task(
        payload: Dict[str, Any] = Body(...),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.create_task(user, payload)

    @app.get("/api/tasks")
    def list_tasks(
        type: str = Query("all"),
        teamId: Optional[str] = Query(None),
        userId: Optional[str] = Query(None),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.list_user_tasks(user, kind=type, team_id=teamId, user_id=userId)

    @app.get("/api/tasks/stats")
    def dashboard_stats(
        teamId: Optional[str] = Query(None),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.dashboard_stats(user, team_id=teamId)

    @app.get("/api/tasks/history")
    def task_history(
        userId: Optional[str] = Query(None),
        teamId: Optional[str] = Query(None),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.get_history(user, user_id=userId, team_id=teamId)

    @app.get("/api/tasks/heatmap")
    def heatmap(
        userId: Optional[str] = Query(None),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.heatmap(user, user_id=userId)

    @app.post("/api/tasks/manual-cleanup")
    def manual_cleanup(
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        logger.info(f"Manual cleanup requested by {user}")
        outcome = rt.cleanup.run(triggered_by=f"manual:{user}")
        return JSONResponse(
            status_code=CLEANUP_STATUS_CODES[outcome.status],
            content={"message": f"Cleanup {outcome.status}", "result": outcome.to_dict()},
        )

    @app.get("/api/tasks/{task_id}")
    def get_task(task_id: str, user: str = Depends(current_user), rt: MomentumRuntime = Depends(get_rt)):
        return rt.tasks.get_task(task_id, user)

    @app.patch("/api/tasks/{task_id}")
    def update_task(
        task_id: str,
        payload: Dict[str, Any] = Body(...),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.update_task(task_id, user, payload)

    @app.patch("/api/tasks/{task_id}/complete")
    def toggle_completion(
        task_id: str,
        payload: Dict[str, Any] = Body(...),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        toggle: CompletionToggle = parse_record(CompletionToggle, payload)
        return rt.tasks.toggle_completion(task_id, user, toggle.is_completed)

    @app.delete("/api/tasks/{task_id}")
    def delete_task(task_id: str, user: str = Depends(current_user), rt: MomentumRuntime = Depends(get_rt)):
        result = rt.tasks.delete_task(task_id, user)
        return {"message": "Task deleted successfully", **result}

    # -----------------------------------------------------------------------
    # Teams
    # -----------------------------------------------------------------------

    @app.get("/api/teams/{team_id}/tasks")
    def team_tasks(
        team_id: str,
        status: str = Query("active"),
        user: str = Depends(current_user),
        rt: MomentumRuntime = Depends(get_rt),
    ):
        return rt.tasks.list_team_tasks(user, team_id, status=status)

    return app
