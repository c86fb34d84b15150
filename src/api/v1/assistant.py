"""Assistant endpoints for API v1.

Thin HTTP layer over :class:`~src.pipeline.orchestrator.AssistantOrchestrator`.
The message endpoint always answers 200 with an :class:`AssistantResponse`;
degraded states (rate limited, backend down, empty input) are visible in
the response ``source`` and ``metadata`` rather than as HTTP errors.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.models.enums import UserRole
from src.models.request import ChatMessage
from src.models.response import AssistantResponse
from src.pipeline.orchestrator import AssistantOrchestrator
from src.services.errors import KnowledgeBaseError
from src.services.reply_policy import should_respond

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class MessageRequest(BaseModel):
    """Body for ``POST /api/v1/assistant/messages``."""

    user_id: str = Field(default="anonymous", min_length=1, max_length=128)
    text: str = Field(default="", max_length=2000, description="Message as typed by the user")
    submitted_at: datetime | None = None


class WelcomeResponse(BaseModel):
    message: str
    kb_version: int


class BackendStatusResponse(BaseModel):
    name: str
    available: bool
    model: str | None = None
    url: str | None = None
    error: str | None = None
    details: dict = Field(default_factory=dict)


class CacheClearResponse(BaseModel):
    removed: int


class ReloadResponse(BaseModel):
    kb_version: int


class ShouldRespondRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    user_role: UserRole = UserRole.CITIZEN
    now: datetime | None = None


class ShouldRespondResponse(BaseModel):
    should_respond: bool


def _orchestrator(request: Request) -> AssistantOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Assistant not available")
    return orchestrator


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/messages", response_model=AssistantResponse)
async def post_message(body: MessageRequest, request: Request) -> AssistantResponse:
    """Answer a citizen message.

    ``is_emergency`` tells the client to show the emergency-call
    affordance; the server never contacts emergency services itself.
    """
    orchestrator = _orchestrator(request)
    return await orchestrator.handle_user_message(body.user_id, body.text, body.submitted_at)


@router.get("/welcome", response_model=WelcomeResponse)
async def get_welcome(request: Request) -> WelcomeResponse:
    orchestrator = _orchestrator(request)
    return WelcomeResponse(
        message=orchestrator.welcome_message(),
        kb_version=request.app.state.knowledge_base.version,
    )


@router.get("/stats")
async def get_stats(request: Request, user_id: str = "anonymous") -> dict:
    """Cache, rate-limit and backend statistics.

    ``rate_limit.remaining_requests`` is computed for *user_id*.
    """
    orchestrator = _orchestrator(request)
    return await orchestrator.get_stats(user_id)


@router.get("/backend", response_model=BackendStatusResponse)
async def get_backend_status(request: Request) -> BackendStatusResponse:
    orchestrator = _orchestrator(request)
    status = await orchestrator.backend_status()
    return BackendStatusResponse(
        name=status.name,
        available=status.available,
        model=status.model,
        url=status.url,
        error=status.error,
        details=status.details,
    )


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(request: Request) -> CacheClearResponse:
    orchestrator = _orchestrator(request)
    removed = await orchestrator.clear_cache()
    return CacheClearResponse(removed=removed)


@router.post("/knowledge-base/reload", response_model=ReloadResponse)
async def reload_knowledge_base(request: Request) -> ReloadResponse:
    """Re-read the configured knowledge base file and bump its version.

    On failure the current version stays active and 422 is returned; the
    underlying error is only logged.
    """
    orchestrator = _orchestrator(request)
    try:
        version = orchestrator.reload_knowledge_base()
    except KnowledgeBaseError as exc:
        logger.error("api.assistant.kb_reload_failed", error=str(exc))
        raise HTTPException(
            status_code=422,
            detail="Knowledge base reload failed; the current version remains active",
        ) from None
    return ReloadResponse(kb_version=version)


@router.post("/should-respond", response_model=ShouldRespondResponse)
async def post_should_respond(body: ShouldRespondRequest) -> ShouldRespondResponse:
    return ShouldRespondResponse(should_respond=should_respond(body.messages, body.user_role, body.now))
