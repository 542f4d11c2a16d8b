"""semstore: semantic storage and retrieval engine."""

__version__ = "1.0.0"

from semstore.engine import StorageEngine, create_engine  # noqa: E402

__all__ = ["StorageEngine", "__version__", "create_engine"]
