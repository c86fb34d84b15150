"""Response orchestrator for the citizen-safety assistant.

Runs one user message through the pipeline:

    emergency check -> (escalate | cache probe)
    cache miss -> rate check -> classify -> knowledge base
    KB miss -> generative backend -> (answer | KB fallback)

The emergency check always comes first and is never cached or rate
limited.  A rate-limit rejection only skips the generative call; the
user still gets a knowledge-base or fallback answer.  Whatever goes
wrong below this layer, :meth:`AssistantOrchestrator.handle_user_message`
returns a non-empty response; only cancellation propagates.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.models.enums import Category, ResponseSource, SuggestedAction, UrgencyTier
from src.models.request import Query
from src.models.response import (
    AssistantResponse,
    EscalationDecision,
    LatencyBreakdown,
    ResponseMetadata,
)
from src.services.cache import CacheEntry
from src.services.errors import InvalidInputError, RateLimitExceededError
from src.services.generative import GenerationContext, Unavailable
from src.services.text import normalize_query

if TYPE_CHECKING:
    from pathlib import Path

    from src.services.cache import ResponseCache
    from src.services.emergency import EmergencyDetector
    from src.services.generative import BackendStatus, GenerativeBackend
    from src.services.intent import Classification, IntentClassifier
    from src.services.knowledge_base import KnowledgeBase, KnowledgeSnapshot
    from src.services.rate_limit import SlidingWindowRateLimiter

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# AssistantOrchestrator
# ---------------------------------------------------------------------------


class AssistantOrchestrator:
    """Coordinates the detector, cache, rate limiter, classifier, knowledge
    base and generative backend for every user message.

    All collaborators are passed in explicitly; the orchestrator owns no
    global state.  Per-step latency is recorded on every response.

    Parameters
    ----------
    fallback_cache_ttl_seconds:
        TTL used when caching a fallback answer produced because the
        generative backend was unavailable.  Kept short so the backend
        is retried soon after it recovers.
    """

    __slots__ = (
        "_backend",
        "_cache",
        "_classifier",
        "_detector",
        "_fallback_ttl",
        "_kb",
        "_rate_limiter",
    )

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        detector: EmergencyDetector,
        classifier: IntentClassifier,
        cache: ResponseCache,
        rate_limiter: SlidingWindowRateLimiter,
        backend: GenerativeBackend,
        *,
        fallback_cache_ttl_seconds: float = 60.0,
    ) -> None:
        self._kb = knowledge_base
        self._detector = detector
        self._classifier = classifier
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._backend = backend
        self._fallback_ttl = fallback_cache_ttl_seconds

    # ------------------------------------------------------------------
    # Message pipeline
    # ------------------------------------------------------------------

    async def handle_user_message(
        self,
        user_id: str,
        text: str,
        submitted_at: datetime | None = None,
    ) -> AssistantResponse:
        """Answer one user message.  Never raises (except on cancellation).

        Parameters
        ----------
        user_id:
            Identity used for rate limiting.
        text:
            Raw message as typed by the user.
        submitted_at:
            When the user sent the message; defaults to now.  Recorded on
            the query only; rate limiting uses the limiter's clock.
        """
        query = Query(
            user_id=str(user_id),
            raw_text=text if isinstance(text, str) else "",
            submitted_at=submitted_at or datetime.now(UTC),
        )
        log = logger.bind(request_id=query.request_id, user_id=query.user_id)
        log.info("assistant.message_received", text_length=len(query.raw_text))
        pipeline_start = time.perf_counter()

        try:
            response = await self._run(query, log)
        except Exception:
            log.error("assistant.pipeline_failed", exc_info=True)
            snapshot = self._kb.snapshot()
            response = self._build_response(
                query,
                snapshot,
                text=self._kb.fallback_message(),
                source=ResponseSource.FALLBACK,
            )

        log.info(
            "assistant.response_ready",
            source=response.source.value,
            category=response.category.value,
            urgency=response.urgency.value,
            is_emergency=response.is_emergency,
            cached=response.cached,
            total_ms=_elapsed_ms(pipeline_start),
        )
        return response

    async def _run(self, query: Query, log: structlog.stdlib.BoundLogger) -> AssistantResponse:
        latency = LatencyBreakdown()
        snapshot = self._kb.snapshot()
        normalized = normalize_query(query.raw_text)

        # -- Step 1: Emergency check ------------------------------------------
        step_start = time.perf_counter()
        decision = self._detector.detect(normalized)
        latency.emergency_check_ms = _elapsed_ms(step_start)
        if decision.is_emergency:
            log.warning(
                "assistant.escalated",
                matched_phrase=decision.matched_phrase,
                suggested_action=decision.suggested_action.value,
            )
            return self._escalate(query, snapshot, decision, latency)

        # -- Step 2: Input validation -----------------------------------------
        try:
            _require_text(normalized)
        except InvalidInputError:
            log.info("assistant.invalid_input")
            return self._build_response(
                query,
                snapshot,
                text=self._kb.elaboration_prompt(),
                source=ResponseSource.INVALID_INPUT,
                latency=latency,
            )

        # -- Step 3: Cache probe ----------------------------------------------
        step_start = time.perf_counter()
        cached = await self._cache.get(normalized, snapshot.version)
        latency.cache_ms = _elapsed_ms(step_start)
        if cached is not None:
            log.info("assistant.cache_hit", hit_count=cached.hit_count, cached_source=cached.source.value)
            return self._build_response(
                query,
                snapshot,
                text=cached.response,
                source=ResponseSource.CACHE,
                category=cached.category,
                urgency=cached.urgency,
                confidence=cached.confidence,
                cached=True,
                latency=latency,
            )

        # -- Step 4: Rate check -----------------------------------------------
        # The window runs on the limiter's own clock; ``submitted_at`` is
        # caller-supplied and never moves a user's window.
        step_start = time.perf_counter()
        rate_limited = False
        retry_after = 0.0
        try:
            await self._rate_limiter.acquire(query.user_id)
        except RateLimitExceededError as exc:
            rate_limited = True
            retry_after = exc.retry_after_seconds
        latency.rate_check_ms = _elapsed_ms(step_start)

        # -- Step 5: Classification -------------------------------------------
        step_start = time.perf_counter()
        classification = self._classifier.classify(normalized, snapshot)
        latency.classification_ms = _elapsed_ms(step_start)
        log.info(
            "assistant.classified",
            category=classification.category.value,
            urgency=classification.urgency.value,
            confidence=classification.confidence,
            sentiment=classification.sentiment.value,
        )

        if classification.urgency is UrgencyTier.CRITICAL:
            decision = EscalationDecision(
                is_emergency=True,
                matched_phrase=classification.matched_keywords[0] if classification.matched_keywords else None,
                suggested_action=SuggestedAction.CALL_EMERGENCY_SERVICES,
            )
            log.warning("assistant.escalated", matched_phrase=decision.matched_phrase, via="classification")
            return self._escalate(query, snapshot, decision, latency)

        # -- Step 6: Knowledge base -------------------------------------------
        if classification.is_confident and classification.entry is not None:
            answer = self._kb.render_entry(classification.entry, snapshot)
            await self._store(normalized, answer, classification, snapshot, ResponseSource.KNOWLEDGE_BASE)
            return self._build_response(
                query,
                snapshot,
                text=answer,
                source=ResponseSource.KNOWLEDGE_BASE,
                classification=classification,
                rate_limited=rate_limited,
                retry_after=retry_after,
                latency=latency,
            )

        # -- Step 7: Degraded answer when over the limit ----------------------
        if rate_limited:
            log.info("assistant.rate_limited_fallback", retry_after_s=round(retry_after, 2))
            text = f"{self._kb.fallback_message()} {self._kb.rate_limited_notice(retry_after)}"
            return self._build_response(
                query,
                snapshot,
                text=text,
                source=ResponseSource.FALLBACK,
                classification=classification,
                rate_limited=True,
                retry_after=retry_after,
                latency=latency,
            )

        # -- Step 8: Generative backend ---------------------------------------
        step_start = time.perf_counter()
        context = GenerationContext(
            category=classification.category,
            urgency=classification.urgency,
            entities=classification.entities,
            kb_hint=self._kb_hint(classification, snapshot),
        )
        result = await self._backend.generate(query.raw_text, context)
        latency.generation_ms = _elapsed_ms(step_start)

        if isinstance(result, Unavailable):
            log.warning("assistant.backend_unavailable", backend=result.backend, reason=result.reason)
            text = self._kb.fallback_message()
            await self._store(
                normalized, text, classification, snapshot, ResponseSource.FALLBACK, ttl=self._fallback_ttl
            )
            return self._build_response(
                query,
                snapshot,
                text=text,
                source=ResponseSource.FALLBACK,
                classification=classification,
                backend=result.backend or self._backend.name,
                backend_error=result.reason,
                latency=latency,
            )

        await self._store(normalized, result, classification, snapshot, ResponseSource.GENERATIVE)
        return self._build_response(
            query,
            snapshot,
            text=result,
            source=ResponseSource.GENERATIVE,
            classification=classification,
            backend=self._backend.name,
            latency=latency,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _escalate(
        self,
        query: Query,
        snapshot: KnowledgeSnapshot,
        decision: EscalationDecision,
        latency: LatencyBreakdown,
    ) -> AssistantResponse:
        return self._build_response(
            query,
            snapshot,
            text=self._kb.emergency_guidance(decision),
            source=ResponseSource.ESCALATION,
            category=Category.EMERGENCY,
            urgency=UrgencyTier.CRITICAL,
            confidence=1.0,
            decision=decision,
            latency=latency,
        )

    def _kb_hint(self, classification: Classification, snapshot: KnowledgeSnapshot) -> str | None:
        for category, _ in classification.alternatives:
            entry = snapshot.by_category.get(category)
            if entry is not None and entry.question:
                return entry.question
        return None

    async def _store(
        self,
        key: str,
        text: str,
        classification: Classification,
        snapshot: KnowledgeSnapshot,
        source: ResponseSource,
        *,
        ttl: float | None = None,
    ) -> None:
        await self._cache.put(
            CacheEntry(
                key=key,
                response=text,
                category=classification.category,
                urgency=classification.urgency,
                kb_version=snapshot.version,
                source=source,
                confidence=classification.confidence,
            ),
            ttl_seconds=ttl,
        )

    @staticmethod
    def _build_response(
        query: Query,
        snapshot: KnowledgeSnapshot,
        *,
        text: str,
        source: ResponseSource,
        classification: Classification | None = None,
        category: Category | None = None,
        urgency: UrgencyTier | None = None,
        confidence: float | None = None,
        decision: EscalationDecision | None = None,
        cached: bool = False,
        rate_limited: bool = False,
        retry_after: float = 0.0,
        backend: str | None = None,
        backend_error: str | None = None,
        latency: LatencyBreakdown | None = None,
    ) -> AssistantResponse:
        """Assemble the final :class:`AssistantResponse`."""
        if classification is not None:
            category = category or classification.category
            urgency = urgency or classification.urgency
            confidence = classification.confidence if confidence is None else confidence
        decision = decision or EscalationDecision.none()

        return AssistantResponse(
            request_id=query.request_id,
            text=text,
            category=category or Category.UNKNOWN,
            urgency=urgency or UrgencyTier.LOW,
            is_emergency=decision.is_emergency,
            suggested_action=decision.suggested_action,
            source=source,
            confidence=confidence or 0.0,
            kb_version=snapshot.version,
            cached=cached,
            metadata=ResponseMetadata(
                latency=latency or LatencyBreakdown(),
                matched_phrase=decision.matched_phrase,
                rate_limited=rate_limited,
                retry_after_seconds=round(retry_after, 2),
                backend=backend,
                backend_error=backend_error,
                entities=list(classification.entities) if classification is not None else [],
            ),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def welcome_message(self) -> str:
        return self._kb.welcome_message()

    async def get_stats(self, user_id: str = "anonymous") -> dict[str, Any]:
        """Engine statistics, including the remaining budget for *user_id*."""
        return {
            "kb_version": self._kb.version,
            "cache": self._cache.stats(),
            "rate_limit": {
                **self._rate_limiter.stats(),
                "remaining_requests": await self._rate_limiter.remaining(user_id),
                "retry_after_seconds": round(await self._rate_limiter.retry_after(user_id), 2),
            },
            "backend": self._backend.name,
        }

    async def backend_status(self) -> BackendStatus:
        return await self._backend.status()

    async def clear_cache(self) -> int:
        return await self._cache.clear()

    def reload_knowledge_base(self, path: Path | str | None = None) -> int:
        """Reload the KB from *path* or, by default, the file it was loaded
        from; cached answers from older versions become misses.  Raises
        ``KnowledgeBaseError`` and keeps the current version on failure."""
        return self._kb.reload(path=path)

    async def close(self) -> None:
        await self._backend.close()


def _require_text(normalized: str) -> None:
    if not normalized:
        raise InvalidInputError("message is empty or whitespace only")


def _elapsed_ms(start: float) -> float:
    """Milliseconds elapsed since *start* (from ``time.perf_counter``)."""
    return round((time.perf_counter() - start) * 1000, 2)
