"""Tokenization helpers shared by the lexical analyzers."""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List

_TOKEN_RE = re.compile(r"[^\W_]+(?:'[^\W_]+)*")

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "about", "above", "after", "again", "against", "also", "because", "been",
        "before", "being", "below", "between", "both", "could", "didn't", "does",
        "doesn't", "doing", "don't", "down", "during", "each", "even", "from",
        "further", "have", "haven't", "having", "here", "into", "it's", "just",
        "like", "more", "most", "much", "only", "other", "ought", "over", "same",
        "should", "some", "such", "than", "that", "that's", "their", "theirs",
        "them", "then", "there", "these", "they", "this", "those", "through",
        "today", "under", "until", "very", "wasn't", "were", "what", "when",
        "where", "which", "while", "with", "would", "your", "yours", "yourself",
        "really", "still", "will", "went", "came", "make", "made",
        "thing", "things", "something", "anything", "feel", "felt", "think",
    }
)


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens, apostrophes kept inside words."""
    return _TOKEN_RE.findall(text.lower())


def keyword_tokens(
    text: str,
    min_length: int = 4,
    stop_words: Iterable[str] = STOP_WORDS,
) -> List[str]:
    """Tokens eligible as loop topics, in order of appearance, de-duplicated."""
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    seen = set()
    result = []
    for token in tokenize(text):
        if len(token) < min_length or token in stop or token.isdigit():
            continue
        if token not in seen:
            seen.add(token)
            result.append(token)
    return result


def normalized(text: str) -> str:
    """Space-joined tokens padded with spaces, for whole-word phrase lookup."""
    return f" {' '.join(tokenize(text))} "


def contains_phrase(normalized_text: str, phrase: str) -> bool:
    """True if ``phrase`` occurs as whole words in a ``normalized()`` string."""
    return f" {' '.join(tokenize(phrase))} " in normalized_text


def contains_any(normalized_text: str, phrases: Iterable[str]) -> bool:
    return any(contains_phrase(normalized_text, phrase) for phrase in phrases)
