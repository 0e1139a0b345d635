"""Application configuration loaded from environment.

This module centralizes all runtime configuration including:
- OpenAI embedding and completion models
- Chroma host/port and collection name
- Retrieval and prompt limits
- MongoDB request-log store and the advisory rate limit
- Observability/logging options

Secrets default to empty values so a missing key surfaces when the
corresponding service is first called rather than at startup.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # General app metadata
    app_name: str = "SCGPT Star Citizen Assistant"
    app_version: str = "1.0.0"
    environment: Literal["development", "production"] = "development"
    cors_origins: List[str] = ["*"]

    # OpenAI (embeddings + chat completions)
    openai_api_key: SecretStr = SecretStr("")
    openai_base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    completion_model: str = "gpt-4-turbo"

    # ChromaDB connection
    chroma_host: str = "chroma"
    chroma_port: int = 8000
    chroma_ssl: bool = False
    chroma_api_key: SecretStr = SecretStr("")
    chroma_collection: str = "scgpt-oai-small"

    # Retrieval and prompt limits
    retrieval_top_k: int = Field(50, ge=1)
    max_context_passages: int = Field(
        50,
        ge=0,
        description="Upper bound on passages inserted into the system prompt.",
    )
    max_passage_characters: int = Field(
        2000,
        ge=1,
        description="Passages longer than this are cut and marked with '...'.",
    )

    # Query validation
    query_max_length: int = Field(1000, ge=1)
    client_query_max_length: int = Field(5000, ge=1)

    # MongoDB request-log store
    mongodb_uri: SecretStr = SecretStr("mongodb://localhost:27017/myapp")
    mongodb_database: str | None = Field(
        None,
        description="Defaults to the database named in the connection string.",
    )
    mongodb_collection: str = "requestlogs"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 5
    mongodb_socket_timeout_ms: int = 45000
    request_log_drain_timeout: float = 5.0

    # Advisory rate limit shown to clients
    rate_limit_window_hours: int = 24
    rate_limit_max_requests: int = 5

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached application settings instance.

    Using `lru_cache` ensures environment variables are only read once
    and the same config object is reused across the app.
    """

    return Settings()  # type: ignore[call-arg]
