"""Keyword extraction and similarity used for duplicate-incident detection."""

from __future__ import annotations

import re

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "shall", "can", "need", "must", "ought",
    "to", "of", "in", "for", "on", "with", "at", "by", "from", "as",
    "and", "but", "or", "nor", "not", "so", "yet", "both", "either",
    "neither", "each", "every", "all", "any", "few", "more", "most",
    "other", "some", "such", "no", "only", "own", "same", "than",
    "too", "very", "just", "because", "if", "when", "while", "this",
    "that", "these", "those", "it", "its", "we", "they", "them",
})

MIN_KEYWORD_LENGTH = 3
MIN_SHARED_KEYWORDS = 2

_NON_WORD = re.compile(r"[^a-z0-9\s-]")


def extract_keywords(text: str) -> set[str]:
    """Lowercased, punctuation-stripped tokens of 3+ chars, minus stop words."""
    cleaned = _NON_WORD.sub(" ", text.lower())
    return {
        word for word in cleaned.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    }


def shared_keywords(text_a: str, text_b: str) -> set[str]:
    return extract_keywords(text_a) & extract_keywords(text_b)


def is_similar(text_a: str, text_b: str, threshold: int = MIN_SHARED_KEYWORDS) -> bool:
    return len(shared_keywords(text_a, text_b)) >= threshold
