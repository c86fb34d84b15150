from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import UserRole


class Query(BaseModel):
    """A citizen message as received by the assistant.  Immutable."""

    model_config = {"frozen": True}

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    raw_text: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatMessage(BaseModel):
    """One message of a report chat room, as seen by the auto-reply policy."""

    model_config = {"frozen": True}

    sender: UserRole
    text: str = ""
    timestamp: datetime | None = None
