"""Health check endpoints for the assistant API v1.

Provides liveness and readiness probes.  Readiness requires a loaded
knowledge base and a wired orchestrator; an unreachable generative
backend only degrades the status, since the engine keeps answering from
the knowledge base.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    ``not_ready`` when the knowledge base or orchestrator is missing,
    ``degraded`` when only the generative backend is unavailable.
    """
    checks: dict[str, str] = {}
    status = "ready"

    knowledge_base = getattr(request.app.state, "knowledge_base", None)
    if knowledge_base is not None:
        checks["knowledge_base"] = f"ok (version {knowledge_base.version})"
    else:
        checks["knowledge_base"] = "not_loaded"
        status = "not_ready"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        checks["orchestrator"] = "ok"
        backend = await orchestrator.backend_status()
        if backend.available:
            checks["generative_backend"] = f"ok ({backend.name})"
        else:
            checks["generative_backend"] = f"unavailable ({backend.name}): {backend.error or 'unknown'}"
            if status == "ready":
                status = "degraded"
    else:
        checks["orchestrator"] = "not_initialised"
        status = "not_ready"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
