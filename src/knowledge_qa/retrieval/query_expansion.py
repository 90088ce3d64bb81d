"""Query expansion used before embedding a question."""

from __future__ import annotations

from typing import Protocol

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "be",
        "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "should", "could", "may", "might", "must", "can", "this",
        "that", "these", "those", "what", "which", "who", "when", "where",
        "why", "how", "about", "into", "through", "during", "including",
    }
)


class QueryExpander(Protocol):
    def expand(self, question: str) -> str:
        """Return the text to embed for `question`."""


class KeywordQueryExpander:
    """Appends up to `max_keywords` content words to longer questions."""

    def __init__(self, max_keywords: int = 5) -> None:
        self.max_keywords = max_keywords

    def expand(self, question: str) -> str:
        keywords = [
            word
            for word in question.lower().split()
            if len(word) > 2 and word not in _STOP_WORDS
        ]
        if len(keywords) <= 2:
            return question
        return f"{question} {' '.join(keywords[: self.max_keywords])}".strip()


class IdentityQueryExpander:
    def expand(self, question: str) -> str:
        return question
