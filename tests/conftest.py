"""Shared fixtures and test doubles for the assistant engine tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from src.models.knowledge import KnowledgeBaseDocument
from src.pipeline.orchestrator import AssistantOrchestrator
from src.services.cache import ResponseCache
from src.services.emergency import EmergencyDetector
from src.services.generative import BackendStatus, GenerationContext, Unavailable
from src.services.intent import IntentClassifier
from src.services.knowledge_base import KnowledgeBase
from src.services.rate_limit import SlidingWindowRateLimiter

# -----------------------------------------------------------------------
# Test doubles
# -----------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingBackend:
    """Generative backend that records calls and returns a fixed result."""

    name = "fake"

    def __init__(self, answer: str = "Respuesta generada por el modelo.", *, reason: str | None = None) -> None:
        self.answer = answer
        self.reason = reason
        self.calls: list[tuple[str, GenerationContext | None]] = []
        self.closed = False

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable:
        self.calls.append((text, context))
        if self.reason is not None:
            return Unavailable(self.reason, self.name)
        return self.answer

    async def status(self) -> BackendStatus:
        return BackendStatus(name=self.name, available=self.reason is None)

    async def close(self) -> None:
        self.closed = True


class GuardedBackend(RecordingBackend):
    """Fails the test if called more than ``allowed_calls`` times."""

    def __init__(self, allowed_calls: int) -> None:
        super().__init__()
        self.allowed_calls = allowed_calls

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable:
        if len(self.calls) >= self.allowed_calls:
            pytest.fail(f"generative backend called more than {self.allowed_calls} times")
        return await super().generate(text, context)


class SlowBackend(RecordingBackend):
    """Blocks until cancelled; records whether cancellation reached it."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.cancelled = False

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable:
        self.calls.append((text, context))
        self.started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.answer


def make_document(*entries: dict[str, Any], **overrides: Any) -> KnowledgeBaseDocument:
    """Minimal valid knowledge base document around *entries*."""
    payload: dict[str, Any] = {
        "entries": list(entries),
        "emergency_guidance": "EMERGENCIA. {action_instruction} Contactos: {contacts}",
        "emergency_actions": {
            "call_emergency_services": "Llama al 911.",
            "contact_authority_chat": "Escribe a una autoridad.",
        },
        "fallback_message": "No tengo información específica.",
        "rate_limited_notice": "Espera {seconds} segundos.",
        "elaboration_prompt": "¿Puedes darme más detalles?",
        "welcome_message": "Hola, soy el asistente.",
        "contact_channels": [{"name": "Emergencias", "contact": "911"}],
    }
    payload.update(overrides)
    return KnowledgeBaseDocument.model_validate(payload)


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def knowledge_base() -> KnowledgeBase:
    return KnowledgeBase.load()


@pytest.fixture(scope="session")
def detector() -> EmergencyDetector:
    return EmergencyDetector.load()


@pytest.fixture
def classifier(knowledge_base: KnowledgeBase) -> IntentClassifier:
    return IntentClassifier(knowledge_base, min_confidence=0.15)


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    return ResponseCache(max_entries=256, ttl_seconds=600, shards=4, clock=clock)


@pytest.fixture
def rate_limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(limit=20, window_seconds=60, shards=4, clock=clock)


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def make_orchestrator(knowledge_base, detector, classifier, cache, rate_limiter, backend):
    """Factory so tests can swap individual collaborators."""

    def _make(**overrides: Any) -> AssistantOrchestrator:
        parts = {
            "knowledge_base": knowledge_base,
            "detector": detector,
            "classifier": classifier,
            "cache": cache,
            "rate_limiter": rate_limiter,
            "backend": backend,
        }
        fallback_ttl = overrides.pop("fallback_cache_ttl_seconds", 60.0)
        parts.update(overrides)
        return AssistantOrchestrator(**parts, fallback_cache_ttl_seconds=fallback_ttl)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> AssistantOrchestrator:
    return make_orchestrator()
