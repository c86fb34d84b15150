from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    """Topic a citizen message is about.  Exactly one per query."""

    __slots__ = ()

    ROBBERY = "robbery"
    DOMESTIC_VIOLENCE = "domestic_violence"
    STREET_VIOLENCE = "street_violence"
    EMERGENCY = "emergency"
    NARCOTICS = "narcotics"
    ACCIDENT = "accident"
    VANDALISM = "vandalism"
    NOISE = "noise"
    TRAFFIC = "traffic"
    GENERAL_SAFETY = "general_safety"
    APP_PROCESS = "app_process"
    UNKNOWN = "unknown"


class UrgencyTier(StrEnum):
    """Severity of a query, most severe first.

    ``CRITICAL`` is reserved for emergency results and always escalates.
    """

    __slots__ = ()

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric severity: ``CRITICAL`` = 3 down to ``LOW`` = 0."""
        return _URGENCY_RANK[self]


_URGENCY_RANK: dict[UrgencyTier, int] = {
    UrgencyTier.CRITICAL: 3,
    UrgencyTier.HIGH: 2,
    UrgencyTier.MEDIUM: 1,
    UrgencyTier.LOW: 0,
}


class SuggestedAction(StrEnum):
    __slots__ = ()

    CALL_EMERGENCY_SERVICES = "call_emergency_services"
    CONTACT_AUTHORITY_CHAT = "contact_authority_chat"
    NONE = "none"


class ResponseSource(StrEnum):
    """Terminal state of the pipeline that produced a response."""

    __slots__ = ()

    ESCALATION = "escalation"
    CACHE = "cache"
    KNOWLEDGE_BASE = "knowledge_base"
    GENERATIVE = "generative"
    FALLBACK = "fallback"
    INVALID_INPUT = "invalid_input"


class Sentiment(StrEnum):
    __slots__ = ()

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    URGENT = "urgent"


class EntityType(StrEnum):
    __slots__ = ()

    LOCATION = "location"
    TIME = "time"
    OBJECT = "object"


class UserRole(StrEnum):
    """Sender roles in a report chat room."""

    __slots__ = ()

    CITIZEN = "ciudadano"
    AUTHORITY = "autoridad"
    CHATBOT = "chatbot"
