"""Knowledge base configuration models.

The knowledge base and the emergency phrase list are external
configuration (JSON documents).  These models validate them once at
load time; nothing here is mutated afterwards.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.enums import Category, SuggestedAction, UrgencyTier


class KnowledgeEntry(BaseModel):
    """A canned answer for one topic, selected by keyword overlap."""

    model_config = {"frozen": True}

    id: str = Field(min_length=1)
    category: Category
    match_keywords: tuple[str, ...] = Field(min_length=1)
    response_template: str = Field(min_length=1)
    urgency: UrgencyTier = UrgencyTier.LOW
    question: str | None = None

    @field_validator("match_keywords")
    @classmethod
    def _strip_keywords(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(kw.strip() for kw in value if kw and kw.strip())
        if not cleaned:
            raise ValueError("match_keywords must contain at least one non-blank keyword")
        return cleaned

    @model_validator(mode="after")
    def _critical_only_for_emergencies(self) -> KnowledgeEntry:
        if self.category is Category.UNKNOWN:
            raise ValueError("knowledge entries cannot target the 'unknown' category")
        if self.urgency is UrgencyTier.CRITICAL and self.category is not Category.EMERGENCY:
            raise ValueError(
                f"entry {self.id!r}: critical urgency is reserved for the emergency category"
            )
        return self


class ContactChannel(BaseModel):
    """A human-operated channel the user can fall back to."""

    model_config = {"frozen": True}

    name: str
    contact: str
    description: str = ""


class KnowledgeBaseDocument(BaseModel):
    """Full knowledge base configuration as loaded from disk."""

    model_config = {"frozen": True}

    entries: tuple[KnowledgeEntry, ...] = Field(min_length=1)
    category_labels: dict[Category, str] = Field(default_factory=dict)
    emergency_guidance: str = Field(min_length=1)
    emergency_actions: dict[SuggestedAction, str] = Field(default_factory=dict)
    fallback_message: str = Field(min_length=1)
    rate_limited_notice: str = Field(min_length=1)
    elaboration_prompt: str = Field(min_length=1)
    welcome_message: str = Field(min_length=1)
    contact_channels: tuple[ContactChannel, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_entry_ids(self) -> KnowledgeBaseDocument:
        seen: set[str] = set()
        for entry in self.entries:
            if entry.id in seen:
                raise ValueError(f"duplicate knowledge entry id {entry.id!r}")
            seen.add(entry.id)
        return self


class EmergencyPhrase(BaseModel):
    model_config = {"frozen": True}

    phrase: str = Field(min_length=1)
    suggested_action: SuggestedAction = SuggestedAction.CALL_EMERGENCY_SERVICES

    @model_validator(mode="after")
    def _must_escalate(self) -> EmergencyPhrase:
        if self.suggested_action is SuggestedAction.NONE:
            raise ValueError(f"emergency phrase {self.phrase!r} must suggest an action")
        return self


class EmergencyPhraseList(BaseModel):
    """Ordered emergency matchers; list order is match priority."""

    model_config = {"frozen": True}

    phrases: tuple[EmergencyPhrase, ...] = Field(min_length=1)
