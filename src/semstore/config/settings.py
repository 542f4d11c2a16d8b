"""Application settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from ``SEMSTORE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SEMSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    log_level: str = "INFO"
    log_json: bool = False

    # Storage
    data_dir: Path = Path.home() / ".semstore"
    content_db_name: str = "content.db"
    vector_db_name: str = "vectors.db"

    # Vectors; None means "fixed by the first insert"
    dimension: int | None = None
    capacity: int = 10_000
    retention_days: int = 30

    # HNSW graph
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef_search: int = 50
    hnsw_max_level: int = 16

    # Search
    default_threshold: float = 0.7
    query_threshold: float = 0.6
    hybrid_threshold: float = 0.5
    rrf_k: int = 60
    exact_scan_limit: int = 2000

    # Ingestion
    min_text_length: int = 10
    redact_sensitive: bool = False
    redact_emails: bool = False

    # Embedding
    embedding_provider: str = "hash"  # hash | sentence-transformers
    embedding_model: str = "all-MiniLM-L6-v2"
    hash_dimensions: int = 384

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def content_db_path(self) -> Path:
        return self.data_dir / self.content_db_name

    @property
    def vector_db_path(self) -> Path:
        return self.data_dir / self.vector_db_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
