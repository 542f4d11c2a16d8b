"""Infrastructure adapters: SQLite stores, HNSW graph and embedders."""
