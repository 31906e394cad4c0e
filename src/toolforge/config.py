"""Configuration helpers shared across services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings."""

    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    mcp_host: str = Field("0.0.0.0", alias="MCP_HOST")
    mcp_port: int = Field(3000, alias="MCP_PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO")

    # ranking
    rank_cache_ttl_seconds: int = Field(1800, alias="RANK_CACHE_TTL_SECONDS")
    expansion_cache_ttl_seconds: int = Field(3600, alias="EXPANSION_CACHE_TTL_SECONDS")
    phrase_bonus: float = Field(0.2, alias="PHRASE_BONUS")
    title_phrase_bonus: float = Field(0.1, alias="TITLE_PHRASE_BONUS")
    semantic_fallback_score: float = Field(0.1)

    # assembly
    compat_threshold: float = Field(0.4, alias="COMPAT_THRESHOLD")
    default_max_candidates: int = Field(10)
    default_top_k: int = Field(5)
    default_language: str = Field("en", alias="DEFAULT_LANGUAGE")
    tool_url_template: str | None = Field(default=None, alias="TOOL_URL_TEMPLATE")

    # execution profile handed to the compatibility scorer
    execution_model: str = Field("gpt-4o-mini", alias="EXECUTION_MODEL")
    execution_task: str = Field("simple_qa")
    execution_content_type: str = Field("text")
    execution_output_format: str = Field("text")

    # collaborators
    content_api_url: str = Field("http://localhost:8080", alias="CONTENT_API_URL")
    content_api_key: str | None = Field(default=None, alias="CONTENT_API_KEY")
    content_api_timeout_seconds: float = Field(15.0)
    semantic_api_url: str | None = Field(default=None, alias="SEMANTIC_API_URL")
    semantic_api_key: str | None = Field(default=None, alias="SEMANTIC_API_KEY")
    semantic_model: str = Field("gpt-4o-mini", alias="SEMANTIC_MODEL")
    semantic_timeout_seconds: float = Field(8.0, alias="SEMANTIC_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(
            Path(__file__).resolve().parent.parent / ".env",
            Path.cwd() / ".env",
        ),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
