"""Port definitions.

The engine depends only on these Protocols; adapters live under
``semstore.infrastructure``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Embedding port
# ---------------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into a fixed-dimension vector.

    ``embed`` may decline degenerate input by returning ``None``; callers
    skip storage (or fall back to filtered scans) in that case.
    """

    @property
    def dimensions(self) -> int: ...

    def embed(self, text: str) -> list[float] | None: ...
