"""Spanish text normalisation shared by the detector, classifier and cache.

Normalisation is deliberately light: lower-case, fold diacritics,
collapse whitespace.  Punctuation is kept so the normalised string is
still readable in logs and as a cache key; tokenisation ignores it.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Final

_WHITESPACE_RE: Final[re.Pattern[str]] = re.compile(r"\s+")
_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"\w+", flags=re.UNICODE)

# Folded (accent-free) Spanish function words.  Keep domain words such as
# "noche", "hora" or "calle" out of this list: they carry intent.
STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "a", "al", "algo", "ante", "antes", "aqui", "alli", "como", "con",
        "contra", "cual", "cuales", "cuando", "de", "del", "desde", "donde",
        "el", "ella", "ellas", "ellos", "en", "entre", "era", "eres", "es",
        "esa", "ese", "eso", "esta", "este", "esto", "estos", "estas",
        "estoy", "favor", "fue", "ha", "han", "hacer", "hay", "hasta", "la",
        "las", "le", "les", "lo", "los", "mas", "me", "mi", "mis", "muy",
        "ni", "no", "nos", "o", "para", "pero", "por", "porque", "puedo",
        "puede", "que", "quien", "se", "si", "sin", "sobre", "son", "su",
        "sus", "te", "tengo", "ti", "tu", "tus", "un", "una", "unas", "unos",
        "y", "ya", "yo",
    }
)


def fold_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize_query(raw_text: str) -> str:
    """Return the canonical form of *raw_text*.

    The result is the cache key and the classifier/detector input:
    lower-cased, diacritics folded (``"¿Cómo?"`` -> ``"¿como?"``),
    whitespace collapsed to single spaces and trimmed.
    """
    if not isinstance(raw_text, str):
        return ""
    folded = fold_diacritics(raw_text.lower())
    return _WHITESPACE_RE.sub(" ", folded).strip()


def tokenize(normalized: str) -> list[tuple[str, int, int]]:
    """Split *normalized* into ``(token, start, end)`` word spans."""
    return [(m.group(0), m.start(), m.end()) for m in _TOKEN_RE.finditer(normalized)]


def content_tokens(normalized: str) -> list[tuple[str, int, int]]:
    """Word spans with stop-words removed.

    Falls back to every token when the text is made only of stop-words,
    so short questions like ``"y eso?"`` still have something to score.
    """
    tokens = tokenize(normalized)
    content = [tok for tok in tokens if tok[0] not in STOPWORDS]
    return content or tokens


def phrase_pattern(phrase: str) -> str:
    """Word-bounded regex source for a normalised multi-word *phrase*."""
    words = normalize_query(phrase).split(" ")
    body = r"\s+".join(re.escape(word) for word in words if word)
    return rf"(?<!\w){body}(?!\w)"
