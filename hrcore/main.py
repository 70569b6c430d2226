import asyncio
from contextlib import suppress
from datetime import date, datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from hrcore.clock import local_now
from hrcore.db import engine
from hrcore.errors import ApiError, DependencyError, error_response
from hrcore.logging_utils import setup_json_logging
from hrcore.routers import admin, attendance, leaves
from hrcore.scheduler import due_jobs, run_job
from hrcore.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from hrcore.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("hrcore.request")
reconciliation_worker_logger = logging.getLogger("hrcore.reconciliation_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "anonymous")
    request.state.actor_id = getattr(request.state, "actor_id", None)

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        kind=exc.kind,
        details=exc.details,
    )


@app.exception_handler(SQLAlchemyError)
async def handle_datastore_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(
        "datastore_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    dependency_error = DependencyError()
    return error_response(
        request,
        status_code=dependency_error.status_code,
        code=dependency_error.code,
        message=dependency_error.message,
        kind=dependency_error.kind,
        details=dependency_error.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
        kind="ValidationError",
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(leaves.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _worker_interval_seconds() -> int:
    return max(15, int(settings.reconciliation_worker_interval_seconds))


async def _reconciliation_worker_loop(stop_event: asyncio.Event, last_runs: dict[str, date]) -> None:
    interval_seconds = _worker_interval_seconds()
    while not stop_event.is_set():
        now_local = local_now()
        for job in due_jobs(now_local, last_runs):
            try:
                result = await asyncio.to_thread(run_job, job, now_local.date())
            except Exception:
                reconciliation_worker_logger.exception(
                    "reconciliation_job_failed",
                    extra={"job": job, "run_date": now_local.date().isoformat()},
                )
            else:
                reconciliation_worker_logger.info("reconciliation_worker_tick", extra=result.to_dict())
            # A failed run is not retried the same day; the admin endpoint can backfill it.
            last_runs[job] = now_local.date()

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        reconciliation_worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    reconciliation_worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    last_runs: dict[str, date] = {}
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event, last_runs))
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    app.state.reconciliation_last_runs = last_runs
    reconciliation_worker_logger.info(
        "reconciliation_worker_started",
        extra={"interval_seconds": _worker_interval_seconds()},
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_stop_event = None
    app.state.reconciliation_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    last_runs: dict[str, date] = getattr(app.state, "reconciliation_last_runs", None) or {}
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": getattr(app.state, "reconciliation_worker_task", None) is not None,
            "last_runs": {job: run_date.isoformat() for job, run_date in last_runs.items()},
        },
    }
