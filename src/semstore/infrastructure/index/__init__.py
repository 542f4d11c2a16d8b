from semstore.infrastructure.index.hnsw import HNSWIndex

__all__ = ["HNSWIndex"]
