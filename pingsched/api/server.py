"""
HTTP API for job management.

create_app(service) builds a FastAPI app bound to one SchedulerService.
Request bodies are read as plain JSON and validated by the lifecycle
controller, so every validation problem comes back in the same shape:

    400 {"message": "Invalid job data", "errors": {"field": "problem"}}
    404 {"message": "Job not found"}
    500 {"message": "...", "error": "..."}
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pingsched.core.errors import NotFoundError, PingschedError, ValidationError
from pingsched.scheduler.job import format_ts, utcnow
from pingsched.scheduler.service import SchedulerService

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Exception handlers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    content: dict[str, Any] = {"message": exc.message}
    if exc.details:
        content["errors"] = exc.details
    return JSONResponse(status_code=400, content=content)


def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"message": exc.message})


def pingsched_error_handler(request: Request, exc: PingschedError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=500,
        content={"message": "Error processing request", "error": exc.message},
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"message": "An unexpected error occurred", "error": str(exc)},
    )


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        raise ValidationError("Invalid job data", {"body": "Request body must be valid JSON"})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# App factory
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def create_app(service: SchedulerService, manage_lifecycle: bool = True) -> FastAPI:
    """
    Build the API for a service.

    manage_lifecycle: connect the service on startup and close it on
    shutdown. Pass False when the caller owns the service's lifetime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.connect()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.close()

    from pingsched import __version__

    app = FastAPI(title="pingsched", version=__version__, lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Content-Length", "X-Request-Id"],
        max_age=600,
    )

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(PingschedError, pingsched_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    controller = service.controller

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": format_ts(utcnow()),
            "queue": {"scheduled": len(service.queue), "dead_letter": len(service.dead_letter)},
            "runs": service.stats.to_dict(),
        }

    # ── Jobs ──────────────────────────────────────────────────────────────────

    @app.post("/jobs", status_code=201)
    async def create_job(request: Request) -> dict[str, Any]:
        job = await controller.create(await _read_json(request))
        return {"message": "Job created successfully", "job": job.to_dict()}

    @app.get("/jobs")
    async def list_jobs(status: str | None = None) -> list[dict[str, Any]]:
        return [job.to_dict() for job in await controller.list(status)]

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str) -> dict[str, Any]:
        return (await controller.get(job_id)).to_dict()

    @app.put("/jobs/{job_id}")
    async def update_job(job_id: str, request: Request) -> dict[str, Any]:
        job = await controller.update(job_id, await _read_json(request))
        return {"message": "Job updated successfully", "job": job.to_dict()}

    @app.patch("/jobs/{job_id}/status")
    async def update_job_status(job_id: str, request: Request) -> dict[str, Any]:
        body = await _read_json(request)
        status = body.get("status") if isinstance(body, dict) else None
        job = await controller.set_status(job_id, status)
        return {
            "message": f"Job status updated to {job.status.value} successfully",
            "job": job.to_dict(),
        }

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str) -> dict[str, Any]:
        await controller.delete(job_id)
        return {"message": "Job deleted successfully"}

    @app.post("/jobs/{job_id}/run")
    async def run_job(job_id: str) -> dict[str, Any]:
        await controller.run_now(job_id)
        return {"message": "Job triggered successfully"}

    # ── Dead-letter lane ──────────────────────────────────────────────────────

    @app.get("/dlq")
    async def list_dead_letter() -> list[dict[str, Any]]:
        return [job.to_dict() for job in await controller.list_dead_letter()]

    @app.post("/dlq/{job_id}/reactivate")
    async def reactivate_job(job_id: str) -> dict[str, Any]:
        job = await controller.reactivate(job_id)
        return {"message": "Job reactivated successfully", "job": job.to_dict()}

    @app.post("/dlq/{job_id}/complete")
    async def complete_job(job_id: str) -> dict[str, Any]:
        job = await controller.complete(job_id)
        return {"message": "Job marked as completed successfully", "job": job.to_dict()}

    # ── Queue inspection ──────────────────────────────────────────────────────

    @app.get("/queue/failed")
    async def list_failed_entries() -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in service.queue.failed()]

    return app
