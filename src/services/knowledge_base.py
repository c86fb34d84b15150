"""Versioned, read-only knowledge base.

The knowledge base is the always-available response source: a static
category -> answer mapping plus the canned messages the engine needs
when it cannot answer (fallback, rate-limit notice, emergency guidance).

Request handlers only ever read an immutable :class:`KnowledgeSnapshot`.
A reload builds a complete new snapshot and swaps it in with a single
attribute assignment, so a request never observes a half-loaded base.
Every successful load bumps :attr:`KnowledgeBase.version`; cached answers
stamped with an older version are treated as misses.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

import structlog

from src.data.loader import load_knowledge_document
from src.models.enums import Category, SuggestedAction
from src.models.knowledge import KnowledgeBaseDocument, KnowledgeEntry
from src.models.response import EscalationDecision

logger = structlog.get_logger(__name__)

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\{(\w+)\}")


def render(template: str, **params: object) -> str:
    """Substitute ``{name}`` placeholders in *template*.

    Plain substitution only: no conditionals, no format specs.  Unknown
    placeholders are left in place verbatim, and literal braces that do
    not wrap a single word are untouched.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in params:
            return str(params[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class KnowledgeSnapshot:
    """One immutable, fully indexed version of the knowledge base."""

    version: int
    document: KnowledgeBaseDocument
    by_category: dict[Category, KnowledgeEntry] = field(default_factory=dict)
    by_id: dict[str, KnowledgeEntry] = field(default_factory=dict)

    @property
    def entries(self) -> tuple[KnowledgeEntry, ...]:
        return self.document.entries

    @classmethod
    def build(cls, version: int, document: KnowledgeBaseDocument) -> KnowledgeSnapshot:
        by_category: dict[Category, KnowledgeEntry] = {}
        for entry in document.entries:
            # The first declared entry is the canonical answer for its category.
            by_category.setdefault(entry.category, entry)
        return cls(
            version=version,
            document=document,
            by_category=by_category,
            by_id={entry.id: entry for entry in document.entries},
        )


# ---------------------------------------------------------------------------
# KnowledgeBase
# ---------------------------------------------------------------------------


class KnowledgeBase:
    """Read-mostly store for knowledge entries and canned messages.

    Parameters
    ----------
    document:
        A validated knowledge base document.  Use :meth:`load` to read
        one from disk.
    """

    __slots__ = ("_snapshot", "_source")

    render = staticmethod(render)

    def __init__(self, document: KnowledgeBaseDocument, *, source: Path | str | None = None) -> None:
        self._snapshot = KnowledgeSnapshot.build(1, document)
        self._source = Path(source) if source is not None else None

    @classmethod
    def load(cls, path: Path | str | None = None) -> KnowledgeBase:
        """Load the knowledge base from *path* (or the bundled file).

        The path is remembered and re-read by :meth:`reload`.  Raises
        :class:`~src.services.errors.KnowledgeBaseError` on any read or
        validation failure.
        """
        kb = cls(load_knowledge_document(path), source=path)
        logger.info("kb.loaded", version=kb.version, entries=len(kb.snapshot().entries))
        return kb

    @property
    def source(self) -> Path | None:
        """File the knowledge base was loaded from; ``None`` means bundled."""
        return self._source

    def reload(
        self,
        document: KnowledgeBaseDocument | None = None,
        *,
        path: Path | str | None = None,
    ) -> int:
        """Swap in new content and bump the version.

        With neither argument the file this knowledge base was loaded
        from is re-read (the bundled file when it was built in memory or
        loaded with no path).  A successful *path* reload becomes the new
        source.  On failure the current snapshot stays in place and the
        error propagates.

        Returns
        -------
        int
            The new version number.
        """
        if document is None:
            source = Path(path) if path is not None else self._source
            document = load_knowledge_document(source)
            self._source = source
        previous = self._snapshot
        self._snapshot = KnowledgeSnapshot.build(previous.version + 1, document)
        logger.info(
            "kb.reloaded",
            previous_version=previous.version,
            version=self._snapshot.version,
            entries=len(document.entries),
        )
        return self._snapshot.version

    # -- Read access -----------------------------------------------------------

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> KnowledgeSnapshot:
        """Return the current snapshot.  Callers should hold on to it for
        the duration of one request to see a consistent version."""
        return self._snapshot

    def lookup(self, category: Category) -> str | None:
        """Rendered canonical answer for *category*, or ``None``."""
        snapshot = self._snapshot
        entry = snapshot.by_category.get(category)
        if entry is None:
            return None
        return self.render_entry(entry, snapshot)

    def entry(self, entry_id: str) -> KnowledgeEntry | None:
        return self._snapshot.by_id.get(entry_id)

    def category_label(self, category: Category) -> str:
        return self._snapshot.document.category_labels.get(category, category.value)

    def render_entry(self, entry: KnowledgeEntry, snapshot: KnowledgeSnapshot | None = None) -> str:
        snapshot = snapshot or self._snapshot
        label = snapshot.document.category_labels.get(entry.category, entry.category.value)
        return render(entry.response_template, category_label=label, contacts=self.contacts_text(snapshot))

    # -- Canned messages -------------------------------------------------------

    def contacts_text(self, snapshot: KnowledgeSnapshot | None = None) -> str:
        snapshot = snapshot or self._snapshot
        return "; ".join(
            f"{channel.name}: {channel.contact}" for channel in snapshot.document.contact_channels
        )

    def fallback_message(self) -> str:
        """Generic "no specific information" answer plus the human channels.

        Never empty: the document schema requires both parts.
        """
        snapshot = self._snapshot
        return f"{snapshot.document.fallback_message} {self.contacts_text(snapshot)}."

    def rate_limited_notice(self, retry_after_seconds: float) -> str:
        seconds = max(1, int(round(retry_after_seconds)))
        return render(self._snapshot.document.rate_limited_notice, seconds=seconds)

    def elaboration_prompt(self) -> str:
        return self._snapshot.document.elaboration_prompt

    def welcome_message(self) -> str:
        return self._snapshot.document.welcome_message

    def emergency_guidance(self, decision: EscalationDecision) -> str:
        snapshot = self._snapshot
        document = snapshot.document
        action = decision.suggested_action
        if action is SuggestedAction.NONE:
            action = SuggestedAction.CALL_EMERGENCY_SERVICES
        instruction = document.emergency_actions.get(action) or document.emergency_actions.get(
            SuggestedAction.CALL_EMERGENCY_SERVICES, "911"
        )
        return render(
            document.emergency_guidance,
            action_instruction=instruction,
            contacts=self.contacts_text(snapshot),
            matched_phrase=decision.matched_phrase or "",
        )
