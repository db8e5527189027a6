"""Tests for intelhub.training.keywords."""

from __future__ import annotations

from intelhub.training.keywords import extract_keywords, is_similar, shared_keywords


class TestExtractKeywords:
    def test_lowercases_and_strips_punctuation(self):
        assert extract_keywords("Login FORM crashes!") == {"login", "form", "crashes"}

    def test_drops_short_tokens_and_stop_words(self):
        assert extract_keywords("it is on the db and ui") == set()

    def test_keeps_hyphenated_words(self):
        assert "rate-limit" in extract_keywords("rate-limit exceeded")

    def test_empty(self):
        assert extract_keywords("") == set()


class TestSimilarity:
    def test_similar_titles(self):
        a = "login form crashes on submit"
        b = "submit button crashes the login form"
        assert shared_keywords(a, b) == {"login", "form", "crashes", "submit"}
        assert is_similar(a, b)

    def test_dissimilar_titles(self):
        assert not is_similar("login form crashes on submit", "dashboard chart renders blank")

    def test_single_shared_word_is_not_enough(self):
        assert not is_similar("login timeout", "login button misaligned")

    def test_custom_threshold(self):
        assert is_similar("login timeout", "login button misaligned", threshold=1)
