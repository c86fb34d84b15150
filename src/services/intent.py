"""Rule-based intent classification over the knowledge base.

Every knowledge entry contributes a set of keyword matchers.  A query
is scored against each entry by *keyword-overlap density*: the share of
the query's content tokens (stop-words removed) that fall inside one of
the entry's keyword matches.  The best-scoring entry decides the
category and urgency.

Besides the category, the classifier extracts lightweight entities
(location, time, object) and a coarse sentiment.  Both are hints for
the generative backend; an ``urgent`` sentiment also raises a low or
medium urgency to high.  Nothing here is learned, and the same input
always yields the same result for the same knowledge base version.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal

import structlog

from src.models.enums import Category, EntityType, Sentiment, UrgencyTier
from src.models.knowledge import KnowledgeEntry
from src.models.response import ExtractedEntity
from src.services.knowledge_base import KnowledgeBase, KnowledgeSnapshot
from src.services.text import content_tokens, normalize_query, phrase_pattern, tokenize

logger = structlog.get_logger(__name__)

TieBreak = Literal["declaration", "urgency"]

_MAX_ALTERNATIVES: Final[int] = 3

# ---------------------------------------------------------------------------
# Entity patterns (applied to normalised, accent-free text)
# ---------------------------------------------------------------------------

_ENTITY_PATTERNS: Final[tuple[tuple[EntityType, re.Pattern[str], float], ...]] = (
    (
        EntityType.LOCATION,
        re.compile(
            r"\b(?:calle|avenida|av|boulevard|blvd|colonia|col|fraccionamiento|fracc"
            r"|cerca de|junto a|frente a)\s+\w+(?:\s+(?:de|del)\s+\w+)?"
        ),
        0.8,
    ),
    (
        EntityType.TIME,
        re.compile(
            r"\b(?:hace\s+\w+\s+\w+|ayer|hoy|ahora|en este momento|manana|tarde|noche|madrugada)\b"
        ),
        0.7,
    ),
    (EntityType.TIME, re.compile(r"\b\d{1,2}:\d{2}\s*(?:am|pm)?"), 0.7),
    (
        EntityType.OBJECT,
        re.compile(
            r"\b(?:celular|telefono|movil|iphone|samsung|cartera|bolsa|mochila|maleta"
            r"|auto|carro|vehiculo|moto|bicicleta|dinero|efectivo|tarjetas)\b"
        ),
        0.9,
    ),
)

# ---------------------------------------------------------------------------
# Sentiment word lists (folded)
# ---------------------------------------------------------------------------

_URGENT_WORDS: Final[frozenset[str]] = frozenset(
    {"urgente", "inmediato", "ahora", "rapido", "emergencia"}
)
_NEGATIVE_WORDS: Final[frozenset[str]] = frozenset(
    {"mal", "terrible", "horrible", "miedo", "asustado", "asustada", "preocupado", "preocupada"}
)
_POSITIVE_WORDS: Final[frozenset[str]] = frozenset(
    {"bien", "gracias", "perfecto", "excelente", "bueno"}
)


def analyze_sentiment(normalized: str) -> Sentiment:
    words = {token for token, _, _ in tokenize(normalized)}
    if words & _URGENT_WORDS:
        return Sentiment.URGENT
    negative = len(words & _NEGATIVE_WORDS)
    positive = len(words & _POSITIVE_WORDS)
    if negative > positive:
        return Sentiment.NEGATIVE
    if positive > negative:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def extract_entities(normalized: str) -> tuple[ExtractedEntity, ...]:
    """Location, time and object mentions, in pattern then text order."""
    entities: list[ExtractedEntity] = []
    seen: set[tuple[EntityType, str]] = set()
    for entity_type, pattern, confidence in _ENTITY_PATTERNS:
        for match in pattern.finditer(normalized):
            value = match.group(0).strip()
            if (entity_type, value) in seen:
                continue
            seen.add((entity_type, value))
            entities.append(ExtractedEntity(type=entity_type, value=value, confidence=confidence))
    return tuple(entities)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Classification:
    """Outcome of :meth:`IntentClassifier.classify`."""

    category: Category
    urgency: UrgencyTier
    confidence: float
    kb_version: int
    entry: KnowledgeEntry | None = None
    alternatives: tuple[tuple[Category, float], ...] = ()
    entities: tuple[ExtractedEntity, ...] = ()
    sentiment: Sentiment = Sentiment.NEUTRAL
    matched_keywords: tuple[str, ...] = ()

    @property
    def is_confident(self) -> bool:
        return self.category is not Category.UNKNOWN


@dataclass(frozen=True, slots=True)
class _CompiledEntry:
    index: int
    entry: KnowledgeEntry
    matchers: tuple[tuple[str, re.Pattern[str]], ...]


@dataclass(slots=True)
class _Candidate:
    compiled: _CompiledEntry
    score: float
    matched: tuple[str, ...]


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class IntentClassifier:
    """Keyword-density classifier bound to a :class:`KnowledgeBase`.

    Parameters
    ----------
    knowledge_base:
        Source of entries.  Matchers are recompiled automatically the
        first time a new knowledge base version is seen.
    min_confidence:
        Scores strictly below this return ``UNKNOWN``.
    tie_break:
        ``"declaration"`` keeps the first-declared entry among equal
        scores; ``"urgency"`` prefers the more urgent entry first.
    """

    __slots__ = ("_compiled", "_compiled_version", "_kb", "_min_confidence", "_tie_break")

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        *,
        min_confidence: float = 0.15,
        tie_break: TieBreak = "declaration",
    ) -> None:
        if tie_break not in ("declaration", "urgency"):
            raise ValueError(f"unknown tie_break {tie_break!r}")
        self._kb = knowledge_base
        self._min_confidence = min_confidence
        self._tie_break = tie_break
        self._compiled: tuple[_CompiledEntry, ...] = ()
        self._compiled_version = -1

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    def _matchers_for(self, snapshot: KnowledgeSnapshot) -> tuple[_CompiledEntry, ...]:
        if snapshot.version != self._compiled_version:
            compiled: list[_CompiledEntry] = []
            for index, entry in enumerate(snapshot.entries):
                matchers = []
                for keyword in entry.match_keywords:
                    normalized = normalize_query(keyword)
                    if normalized:
                        matchers.append((normalized, re.compile(phrase_pattern(normalized))))
                compiled.append(_CompiledEntry(index=index, entry=entry, matchers=tuple(matchers)))
            self._compiled = tuple(compiled)
            self._compiled_version = snapshot.version
            logger.debug("intent.matchers_compiled", kb_version=snapshot.version, entries=len(compiled))
        return self._compiled

    def _sort_key(self, candidate: _Candidate) -> tuple[float, ...]:
        if self._tie_break == "urgency":
            return (-candidate.score, -candidate.compiled.entry.urgency.rank, candidate.compiled.index)
        return (-candidate.score, candidate.compiled.index)

    def _alternatives(
        self, candidates: list[_Candidate], exclude: Category | None
    ) -> tuple[tuple[Category, float], ...]:
        alternatives: list[tuple[Category, float]] = []
        for candidate in candidates:
            category = candidate.compiled.entry.category
            if category is exclude or any(category is c for c, _ in alternatives):
                continue
            alternatives.append((category, round(candidate.score, 4)))
            if len(alternatives) >= _MAX_ALTERNATIVES:
                break
        return tuple(alternatives)

    def classify(self, normalized: str, snapshot: KnowledgeSnapshot | None = None) -> Classification:
        """Classify an already normalised query.

        Returns ``UNKNOWN`` / ``LOW`` / ``0.0`` when nothing scores at
        least ``min_confidence``; the weak candidates are still reported
        as ``alternatives``.  Pass *snapshot* to classify against a
        specific knowledge base version.
        """
        if snapshot is None:
            snapshot = self._kb.snapshot()
        if not isinstance(normalized, str):
            normalized = ""
        sentiment = analyze_sentiment(normalized)
        entities = extract_entities(normalized)

        tokens = content_tokens(normalized)
        candidates: list[_Candidate] = []
        if tokens:
            for compiled in self._matchers_for(snapshot):
                spans: list[tuple[int, int]] = []
                matched: list[str] = []
                for keyword, pattern in compiled.matchers:
                    hits = [m.span() for m in pattern.finditer(normalized)]
                    if hits:
                        spans.extend(hits)
                        matched.append(keyword)
                if not spans:
                    continue
                covered = sum(
                    1 for _, start, end in tokens if any(s <= start and end <= e for s, e in spans)
                )
                if covered == 0:
                    continue
                candidates.append(_Candidate(compiled, covered / len(tokens), tuple(matched)))

        candidates.sort(key=self._sort_key)

        if not candidates or candidates[0].score < self._min_confidence:
            return Classification(
                category=Category.UNKNOWN,
                urgency=UrgencyTier.LOW,
                confidence=0.0,
                kb_version=snapshot.version,
                alternatives=self._alternatives(candidates, None),
                entities=entities,
                sentiment=sentiment,
            )

        best = candidates[0]
        entry = best.compiled.entry
        urgency = entry.urgency
        if sentiment is Sentiment.URGENT and urgency in (UrgencyTier.LOW, UrgencyTier.MEDIUM):
            urgency = UrgencyTier.HIGH

        return Classification(
            category=entry.category,
            urgency=urgency,
            confidence=round(best.score, 4),
            kb_version=snapshot.version,
            entry=entry,
            alternatives=self._alternatives(candidates[1:], entry.category),
            entities=entities,
            sentiment=sentiment,
            matched_keywords=best.matched,
        )
