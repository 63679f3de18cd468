"""Runtime Configuration - environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache): single instance per process
    - Only bootstrap reads settings; core/ and services/ receive plain values

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out of the box against a local Ollama
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Providers
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"
    anthropic_api_key: str | None = None
    anthropic_base_url: str | None = None
    ollama_base_url: str = "http://localhost:11434"

    # Retry & timeouts
    provider_max_retries: int = Field(default=3, ge=0)
    provider_base_delay_ms: int = Field(default=1000, ge=0)
    provider_max_delay_ms: int = Field(default=60_000, ge=0)
    provider_timeout_seconds: float = Field(default=120, gt=0)

    # Agent
    agent_max_turns: int = Field(default=32, ge=0)
    agent_call_timeout_seconds: float | None = None
    agent_max_parallel_tools: int = Field(default=8, ge=1)
    agent_stream: bool = True

    # Streaming
    stream_queue_size: int = Field(default=64, ge=1)

    # Observability
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
