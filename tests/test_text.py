"""Tests for Spanish text normalisation and tokenisation."""

from __future__ import annotations

import re

from src.services.text import (
    STOPWORDS,
    content_tokens,
    fold_diacritics,
    normalize_query,
    phrase_pattern,
    tokenize,
)


class TestNormalizeQuery:
    def test_lowercases_folds_and_collapses(self) -> None:
        result = normalize_query("  ¿Cómo   REPORTO\tun robo?  ")
        assert result == "¿como reporto un robo?", f"unexpected normalisation: {result!r}"

    def test_folds_enye_and_dieresis(self) -> None:
        assert normalize_query("Mañana pingüino") == "manana pinguino"

    def test_blank_input_becomes_empty(self) -> None:
        assert normalize_query("   \n\t ") == "", "whitespace-only input should normalise to ''"

    def test_non_string_input_becomes_empty(self) -> None:
        assert normalize_query(None) == ""  # type: ignore[arg-type]
        assert normalize_query(42) == ""  # type: ignore[arg-type]

    def test_is_idempotent(self) -> None:
        once = normalize_query("Me están ROBANDO")
        assert normalize_query(once) == once, "normalising twice should be a no-op"


class TestTokenize:
    def test_spans_point_into_text(self) -> None:
        text = "me robaron el celular"
        for token, start, end in tokenize(text):
            assert text[start:end] == token, "token span should slice back to the token"

    def test_ignores_punctuation(self) -> None:
        tokens = [t for t, _, _ in tokenize("¿como reporto un robo?")]
        assert tokens == ["como", "reporto", "un", "robo"]

    def test_content_tokens_drop_stopwords(self) -> None:
        tokens = [t for t, _, _ in content_tokens("como reporto un robo")]
        assert tokens == ["reporto", "robo"], "stop-words should be removed"

    def test_content_tokens_fall_back_to_all_tokens(self) -> None:
        tokens = [t for t, _, _ in content_tokens("y eso que")]
        assert tokens == ["y", "eso", "que"], "a stop-word-only query keeps its tokens"

    def test_intent_words_are_not_stopwords(self) -> None:
        for word in ("noche", "hora", "calle", "robo", "hace"):
            assert word not in STOPWORDS, f"{word!r} carries intent and must be scored"


class TestPhrasePattern:
    def test_matches_whole_words_only(self) -> None:
        pattern = re.compile(phrase_pattern("arma"))
        assert pattern.search("tiene un arma") is not None
        assert pattern.search("suena la alarma") is None, "substring inside a word must not match"

    def test_multiword_phrase_tolerates_extra_spaces(self) -> None:
        pattern = re.compile(phrase_pattern("Me están robando"))
        assert pattern.search("ayuda me  estan robando") is not None

    def test_fold_diacritics_keeps_base_letters(self) -> None:
        assert fold_diacritics("Violencia doméstica") == "Violencia domestica"
