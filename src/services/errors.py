"""Exception taxonomy for the assistant engine.

Only :class:`KnowledgeBaseError` is allowed to escape at startup; every
other error is converted into a degraded response by the orchestrator.
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all assistant engine errors."""


class KnowledgeBaseError(AssistantError):
    """The knowledge base or emergency phrase list could not be loaded."""


class InvalidInputError(AssistantError):
    """The user message is empty or whitespace only."""


class BackendUnavailableError(AssistantError):
    """The generative backend could not produce a usable answer.

    ``reason`` is a short machine-readable token such as ``"timeout"``
    or ``"http_status_503"``.
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason)


class RateLimitExceededError(AssistantError):
    """The user exhausted their generative budget for the current window."""

    def __init__(self, user_id: str, retry_after_seconds: float) -> None:
        self.user_id = user_id
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"rate limit exceeded; retry after {retry_after_seconds:.0f}s")
