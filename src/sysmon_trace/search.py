"""Fuzzy search over the observed syscall names."""

from collections.abc import Iterable

from textual.fuzzy import Matcher


def ranked(names: Iterable[str], query: str) -> list[tuple[str, float]]:
    """
    Score every name against `query` and return matches best first.

    Names the query does not match as a subsequence are dropped. Equal scores
    keep the order of `names`.
    """
    matcher = Matcher(query)
    scored = [(name, matcher.match(name)) for name in names]
    matches = [(name, score) for name, score in scored if score > 0]
    matches.sort(key=lambda item: item[1], reverse=True)
    return matches


def search(names: Iterable[str], query: str) -> list[str]:
    """Return the names matching `query`, best first. An empty query matches all."""
    if not query:
        return list(names)
    return [name for name, _ in ranked(names, query)]
