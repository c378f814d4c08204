"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Docsearch API"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite+aiosqlite:///./data/docsearch.db"

    embedding_cache_url: str = "sqlite+aiosqlite:///./data/embedding_cache.db"
    embedding_cache_schema_version: int = 1

    embedding_model_id: str = "intfloat/multilingual-e5-small"
    embedding_device: str = "auto"
    embedding_pooling: Literal["mean"] = "mean"
    embedding_normalize: bool = True
    embedding_dimensions: int = 384
    embedding_runtime: Literal["sentence-transformers", "openai", "hashing"] = "sentence-transformers"
    embedding_transport: Literal["inprocess", "worker", "http", "auto"] = "inprocess"
    embedding_server_url: str = "http://localhost:8000"
    embedding_timeout_seconds: float = 300.0
    embedding_batch_max: int = 100

    passage_prefix: str = "passage: "
    query_prefix: str = "query: "
    passage_max_length: int = 1800
    chunk_max_size: int = 1500
    chunk_overlap: int = 200
    excerpt_length: int = 180

    openai_api_key: SecretStr | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_embedding_fallback_model: str = "text-embedding-ada-002"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
