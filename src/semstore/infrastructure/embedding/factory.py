"""Build the configured embedding provider."""

from __future__ import annotations

from semstore.config.settings import Settings
from semstore.core.exceptions import ConfigurationError
from semstore.domain.ports import EmbeddingProvider
from semstore.infrastructure.embedding.hashing import HashingEmbedder


def create_embedder(settings: Settings) -> EmbeddingProvider:
    """Return the provider named by ``settings.embedding_provider``."""
    provider = settings.embedding_provider.lower()
    if provider == "hash":
        return HashingEmbedder(dimensions=settings.hash_dimensions)
    if provider in ("sentence-transformers", "sentence_transformers"):
        from semstore.infrastructure.embedding.sentence_transformer import (
            SentenceTransformerEmbedder,
        )

        return SentenceTransformerEmbedder(settings.embedding_model)
    raise ConfigurationError(
        f"Unknown embedding provider: {settings.embedding_provider}",
        {"provider": settings.embedding_provider},
    )
