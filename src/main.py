"""SegurITAC assistant FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the assistant engine (knowledge base, emergency
detector, classifier, response cache, rate limiter, generative backend
and orchestrator).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _log_level(name: str) -> int:
    """Numeric level for *name* (case-insensitive); unknown names mean INFO."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _log_level(settings.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the assistant engine.

    On startup:
      1. Load the knowledge base (a failure aborts startup)
      2. Load the emergency phrase list
      3. Build the classifier, response cache and rate limiter
      4. Build the configured generative backend
      5. Create the AssistantOrchestrator
      6. Store everything on ``app.state``

    On shutdown:
      - Close the generative backend's HTTP client.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        generative_backend=settings.generative_backend,
    )
    app.state.start_time = time.time()

    # -- 1-2. Knowledge base and emergency phrases --------------------------
    from src.services.emergency import EmergencyDetector
    from src.services.knowledge_base import KnowledgeBase

    knowledge_base = KnowledgeBase.load(settings.knowledge_base_path)
    detector = EmergencyDetector.load(settings.emergency_phrases_path)
    app.state.knowledge_base = knowledge_base
    logger.info("app.knowledge_base_initialised", version=knowledge_base.version)

    # -- 3. Classifier, cache, rate limiter ---------------------------------
    from src.services.cache import ResponseCache
    from src.services.intent import IntentClassifier
    from src.services.rate_limit import SlidingWindowRateLimiter

    classifier = IntentClassifier(
        knowledge_base,
        min_confidence=settings.classifier_min_confidence,
        tie_break=settings.classifier_tie_break,
    )
    cache = ResponseCache(
        max_entries=settings.cache_max_entries,
        ttl_seconds=settings.cache_ttl_seconds,
        shards=settings.cache_shards,
    )
    rate_limiter = SlidingWindowRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        idle_seconds=settings.rate_limit_idle_seconds,
        shards=settings.rate_limit_shards,
    )
    logger.info(
        "app.stores_initialised",
        cache_max_entries=settings.cache_max_entries,
        rate_limit=settings.rate_limit_requests,
        rate_window_s=settings.rate_limit_window_seconds,
    )

    # -- 4. Generative backend ----------------------------------------------
    from src.services.generative import build_generative_backend

    backend = build_generative_backend(settings)
    logger.info("app.generative_backend_initialised", backend=backend.name)

    # -- 5. Orchestrator ----------------------------------------------------
    from src.pipeline.orchestrator import AssistantOrchestrator

    orchestrator = AssistantOrchestrator(
        knowledge_base,
        detector,
        classifier,
        cache,
        rate_limiter,
        backend,
        fallback_cache_ttl_seconds=settings.fallback_cache_ttl_seconds,
    )
    app.state.orchestrator = orchestrator
    logger.info("app.orchestrator_initialised")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await orchestrator.close()
    app.state.orchestrator = None
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SegurITAC Assistant API",
    description=(
        "Intelligent assistant for a citizen incident-reporting app: emergency "
        "detection, knowledge-base answers and generative fallback in Spanish."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# allow_credentials=True cannot be combined with allow_origins=["*"].
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Authorization"],
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "SegurITAC Assistant API",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "messages": "/api/v1/assistant/messages",
            "welcome": "/api/v1/assistant/welcome",
            "stats": "/api/v1/assistant/stats",
            "backend": "/api/v1/assistant/backend",
            "cache_clear": "/api/v1/assistant/cache/clear",
            "knowledge_base_reload": "/api/v1/assistant/knowledge-base/reload",
            "should_respond": "/api/v1/assistant/should-respond",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
    )
