"""Deterministic feature-hashing embedder.

Useful without any model download: each lowercase word token (and each
adjacent word pair) is hashed into one of ``dimensions`` buckets with a
hash-derived sign, then the vector is L2-normalised. Texts sharing words
therefore land close together under cosine similarity.
"""

from __future__ import annotations

import hashlib
import math
import re

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class HashingEmbedder:
    """Implements the ``EmbeddingProvider`` port with feature hashing."""

    def __init__(self, dimensions: int = 384, use_bigrams: bool = True) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions
        self._use_bigrams = use_bigrams

    @property
    def model_name(self) -> str:
        return f"hashing-{self._dimensions}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float] | None:
        """Embed *text*; declines (returns ``None``) when it has no word tokens."""
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return None

        features = list(tokens)
        if self._use_bigrams:
            features.extend(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))

        vector = [0.0] * self._dimensions
        weight = 1.0 / len(features)
        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            bucket = value % self._dimensions
            sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
            vector[bucket] += sign * weight

        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            return None
        return [x / norm for x in vector]
