from src.models.enums import (
    Category,
    EntityType,
    ResponseSource,
    Sentiment,
    SuggestedAction,
    UrgencyTier,
    UserRole,
)
from src.models.knowledge import (
    ContactChannel,
    EmergencyPhrase,
    EmergencyPhraseList,
    KnowledgeBaseDocument,
    KnowledgeEntry,
)
from src.models.request import ChatMessage, Query
from src.models.response import (
    AssistantResponse,
    EscalationDecision,
    ExtractedEntity,
    LatencyBreakdown,
    ResponseMetadata,
)

__all__ = [
    "AssistantResponse",
    "Category",
    "ChatMessage",
    "ContactChannel",
    "EmergencyPhrase",
    "EmergencyPhraseList",
    "EntityType",
    "EscalationDecision",
    "ExtractedEntity",
    "KnowledgeBaseDocument",
    "KnowledgeEntry",
    "LatencyBreakdown",
    "Query",
    "ResponseMetadata",
    "ResponseSource",
    "Sentiment",
    "SuggestedAction",
    "UrgencyTier",
    "UserRole",
]
