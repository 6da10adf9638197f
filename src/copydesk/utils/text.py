"""Small text helpers used by document metadata and progress tracking."""

from __future__ import annotations

import hashlib


def word_count(text: str) -> int:
    return len([token for token in text.split() if token])


def compute_text_digest(text: str) -> str:
    """Return a SHA-256 digest for the provided text."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def summarize(text: str, limit: int = 80) -> str:
    """Collapse whitespace and truncate ``text`` for log lines."""

    condensed = " ".join(text.split())
    if len(condensed) > limit:
        return f"{condensed[: limit - 3].rstrip()}..."
    return condensed


__all__ = ["compute_text_digest", "summarize", "word_count"]
