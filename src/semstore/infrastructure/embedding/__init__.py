"""Embedding provider adapters."""

from semstore.infrastructure.embedding.factory import create_embedder
from semstore.infrastructure.embedding.hashing import HashingEmbedder

__all__ = ["HashingEmbedder", "create_embedder"]
