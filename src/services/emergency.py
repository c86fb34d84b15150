"""Emergency detection: the first and cheapest check on every message.

The detector scans the normalised message against an ordered list of
phrase matchers.  The first matching phrase wins; list order is the
only notion of priority, so there is never a ranking ambiguity.

The scan is pure: no I/O, no shared state, bounded by
``len(text) * len(phrases)``.  It runs before the cache and the rate
limiter, and its result is never cached.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

import structlog

from src.data.loader import load_emergency_phrases
from src.models.knowledge import EmergencyPhrase
from src.models.response import EscalationDecision
from src.services.text import normalize_query, phrase_pattern

logger = structlog.get_logger(__name__)


class EmergencyDetector:
    """Ordered, word-bounded phrase matcher.

    Parameters
    ----------
    phrases:
        Emergency phrases in priority order.  Each is normalised the
        same way user messages are, so ``"Me están robando"`` in the
        configuration matches ``"me estan robando"`` in a message.
    """

    __slots__ = ("_matchers",)

    def __init__(self, phrases: Iterable[EmergencyPhrase]) -> None:
        matchers: list[tuple[re.Pattern[str], EscalationDecision]] = []
        for phrase in phrases:
            normalized = normalize_query(phrase.phrase)
            if not normalized:
                continue
            matchers.append(
                (
                    re.compile(phrase_pattern(normalized)),
                    EscalationDecision(
                        is_emergency=True,
                        matched_phrase=normalized,
                        suggested_action=phrase.suggested_action,
                    ),
                )
            )
        self._matchers: tuple[tuple[re.Pattern[str], EscalationDecision], ...] = tuple(matchers)

    @classmethod
    def load(cls, path: Path | str | None = None) -> EmergencyDetector:
        detector = cls(load_emergency_phrases(path))
        logger.info("emergency.detector_ready", phrases=len(detector))
        return detector

    def __len__(self) -> int:
        return len(self._matchers)

    def detect(self, normalized: str) -> EscalationDecision:
        """Return the decision for the first phrase found in *normalized*.

        Never raises: ``None``, non-string or blank input yields the
        safe default :meth:`EscalationDecision.none`.
        """
        if not isinstance(normalized, str) or not normalized.strip():
            return EscalationDecision.none()
        for pattern, decision in self._matchers:
            if pattern.search(normalized):
                return decision
        return EscalationDecision.none()
