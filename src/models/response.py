from __future__ import annotations

from pydantic import BaseModel, Field, computed_field

from src.models.enums import (
    Category,
    EntityType,
    ResponseSource,
    SuggestedAction,
    UrgencyTier,
)


class LatencyBreakdown(BaseModel):
    emergency_check_ms: float = 0.0
    cache_ms: float = 0.0
    rate_check_ms: float = 0.0
    classification_ms: float = 0.0
    generation_ms: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_ms(self) -> float:
        return (
            self.emergency_check_ms
            + self.cache_ms
            + self.rate_check_ms
            + self.classification_ms
            + self.generation_ms
        )


class EscalationDecision(BaseModel):
    """Outcome of the emergency check.  Computed per request, never cached."""

    model_config = {"frozen": True}

    is_emergency: bool = False
    matched_phrase: str | None = None
    suggested_action: SuggestedAction = SuggestedAction.NONE

    @classmethod
    def none(cls) -> EscalationDecision:
        """The safe default: not an emergency, nothing to suggest."""
        return _NO_ESCALATION


_NO_ESCALATION = EscalationDecision()


class ExtractedEntity(BaseModel):
    model_config = {"frozen": True}

    type: EntityType
    value: str
    confidence: float = 0.0


class ResponseMetadata(BaseModel):
    latency: LatencyBreakdown = Field(default_factory=LatencyBreakdown)
    matched_phrase: str | None = None
    rate_limited: bool = False
    retry_after_seconds: float = 0.0
    backend: str | None = None
    backend_error: str | None = None
    entities: list[ExtractedEntity] = Field(default_factory=list)


class AssistantResponse(BaseModel):
    """What the chat screen receives for every message.

    ``is_emergency`` is the contract the presentation layer uses to show
    the call-911 affordance; the engine never places the call itself.
    """

    request_id: str
    text: str = Field(min_length=1)
    category: Category
    urgency: UrgencyTier
    is_emergency: bool = False
    suggested_action: SuggestedAction = SuggestedAction.NONE
    source: ResponseSource
    confidence: float = 0.0
    kb_version: int
    cached: bool = False
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
