"""Exact cosine similarity over float32 vectors.

The same metric family is used everywhere: the HNSW graph walks on
cosine distance (``1 - cos``) and results are re-ranked on cosine
similarity. Vectors are stored as little-endian float32 blobs.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

_DTYPE = np.dtype("<f4")


def to_array(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return *vector* as a 1-D float32 array."""
    return np.asarray(vector, dtype=np.float32).reshape(-1)


def magnitude(vector: Sequence[float] | np.ndarray) -> float:
    return float(np.linalg.norm(to_array(vector)))


def is_finite(vector: Sequence[float] | np.ndarray) -> bool:
    return bool(np.all(np.isfinite(to_array(vector))))


def cosine_similarity(
    a: Sequence[float] | np.ndarray,
    b: Sequence[float] | np.ndarray,
    norm_a: float | None = None,
    norm_b: float | None = None,
) -> float:
    """Cosine similarity of *a* and *b*; 0.0 when either has zero length.

    Precomputed magnitudes may be passed to skip the norm computation.
    """
    va = to_array(a)
    vb = to_array(b)
    if va.shape != vb.shape:
        raise ValueError(f"Shape mismatch: {va.shape} vs {vb.shape}")
    na = float(np.linalg.norm(va)) if norm_a is None else norm_a
    nb = float(np.linalg.norm(vb)) if norm_b is None else norm_b
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def cosine_distance(
    a: Sequence[float] | np.ndarray,
    b: Sequence[float] | np.ndarray,
    norm_a: float | None = None,
    norm_b: float | None = None,
) -> float:
    return 1.0 - cosine_similarity(a, b, norm_a, norm_b)


def encode_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    return np.asarray(vector, dtype=_DTYPE).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=_DTYPE).astype(np.float32)
