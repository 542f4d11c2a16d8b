"""Sentence-transformers based embedding provider.

Wraps a HuggingFace sentence-transformers model for local embedding
generation. Requires the ``embeddings`` extra.
"""

from __future__ import annotations


class SentenceTransformerEmbedder:
    """Local embedding model using sentence-transformers."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(model_name)
        self._model_name = model_name
        self._dimensions = self._model.get_sentence_embedding_dimension()

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float] | None:
        if not text.strip():
            return None
        embedding = self._model.encode(text, show_progress_bar=False)
        return embedding.tolist()
