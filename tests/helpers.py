"""Test helpers shared across test modules."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


def at(minutes: float = 0, days: float = 0) -> datetime:
    """The fixed reference time shifted by *minutes* / *days*."""
    return T0 + timedelta(minutes=minutes, days=days)


class KeywordEmbedder:
    """One axis per vocabulary word; declines text with no known word."""

    VOCABULARY = [
        "urgent",
        "email",
        "meeting",
        "budget",
        "travel",
        "invoice",
        "deadline",
        "lunch",
    ]

    def __init__(self) -> None:
        self.calls: list[str] = []

    @property
    def dimensions(self) -> int:
        return len(self.VOCABULARY)

    def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        words = re.findall(r"\w+", text.lower())
        vector = [float(words.count(w)) for w in self.VOCABULARY]
        if not any(vector):
            return None
        return vector


def axis(*words: str) -> list[float]:
    """KeywordEmbedder-space vector with weight 1 on each of *words*."""
    vector = [0.0] * len(KeywordEmbedder.VOCABULARY)
    for word in words:
        vector[KeywordEmbedder.VOCABULARY.index(word)] += 1.0
    return vector
