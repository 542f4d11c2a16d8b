from semstore.infrastructure.vector.similarity import (
    cosine_distance,
    cosine_similarity,
    decode_embedding,
    encode_embedding,
    is_finite,
    magnitude,
    to_array,
)

__all__ = [
    "cosine_distance",
    "cosine_similarity",
    "decode_embedding",
    "encode_embedding",
    "is_finite",
    "magnitude",
    "to_array",
]
