"""Keyword overlap scoring shared by the flat-file store and keyword fallbacks."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

T = TypeVar("T")


def query_words(query: str) -> list[str]:
    """Lower-cased whitespace tokens of *query*."""
    return query.lower().split()


def overlap_score(words: list[str], text: str) -> float:
    """Fraction of *words* that occur as substrings of *text* (case-insensitive)."""
    if not words:
        return 0.0
    text_lower = text.lower()
    return sum(1 for w in words if w in text_lower) / len(words)


def rank_by_overlap(
    query: str, items: Iterable[T], text_of: Callable[[T], str], limit: int
) -> list[tuple[T, float]]:
    """Score *items* against *query* and return the top *limit*, best first.

    Ties keep their input order.
    """
    words = query_words(query)
    scored = [(item, overlap_score(words, text_of(item))) for item in items]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
