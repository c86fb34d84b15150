"""SegurITAC service layer -- knowledge base, emergency detection, intent
classification, response cache, rate limiting and generative backends.

The Vertex AI client used by :class:`GeminiAdapter` is imported lazily
inside the adapter, so ``import src.services`` only needs the core stack.
"""

from __future__ import annotations

from src.services.cache import CacheEntry, ResponseCache
from src.services.emergency import EmergencyDetector
from src.services.errors import (
    AssistantError,
    BackendUnavailableError,
    InvalidInputError,
    KnowledgeBaseError,
    RateLimitExceededError,
)
from src.services.generative import (
    BackendStatus,
    DisabledAdapter,
    GeminiAdapter,
    GenerationContext,
    GenerativeBackend,
    OllamaAdapter,
    Unavailable,
    build_generative_backend,
)
from src.services.intent import Classification, IntentClassifier
from src.services.knowledge_base import KnowledgeBase, KnowledgeSnapshot
from src.services.rate_limit import SlidingWindowRateLimiter
from src.services.reply_policy import should_respond

__all__ = [
    "AssistantError",
    "BackendStatus",
    "BackendUnavailableError",
    "CacheEntry",
    "Classification",
    "DisabledAdapter",
    "EmergencyDetector",
    "GeminiAdapter",
    "GenerationContext",
    "GenerativeBackend",
    "IntentClassifier",
    "InvalidInputError",
    "KnowledgeBase",
    "KnowledgeBaseError",
    "KnowledgeSnapshot",
    "OllamaAdapter",
    "RateLimitExceededError",
    "ResponseCache",
    "SlidingWindowRateLimiter",
    "Unavailable",
    "build_generative_backend",
    "should_respond",
]
