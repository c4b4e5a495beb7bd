"""Application settings using Pydantic BaseSettings."""

import os
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_PROVIDERS = ("openai", "groq", "mock")


def _get_default_db_path() -> str:
    """Get absolute path to default SQLite database."""
    config_dir = os.path.dirname(os.path.abspath(__file__))
    package_dir = os.path.dirname(config_dir)
    backend_dir = os.path.dirname(package_dir)
    db_path = os.path.join(backend_dir, "data", "parley.db")
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)

    # Identity asserted by the upstream auth gateway
    user_id_header: str = Field(default="X-User-ID")

    # Database
    database_url: str = Field(default_factory=_get_default_db_path)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    # LLM provider (selected once at startup)
    llm_provider: str = Field(default="mock")
    llm_api_key: str = Field(default="")
    llm_base_url: str = Field(default="")
    llm_model: str = Field(default="")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    llm_max_tokens: int = Field(default=4096, gt=0)
    llm_max_completion_tokens: int | None = Field(default=None)
    llm_reasoning_effort: str = Field(default="")
    llm_system_prompt: str = Field(default="")
    provider_timeout_seconds: int = Field(default=60)
    provider_connect_timeout_seconds: int = Field(default=10)

    # Admission control (per-user fixed window)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_max_requests: int = Field(default=30, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    # Streaming runs
    llm_worker_pool_size: int = Field(default=16, ge=1)
    llm_worker_queue_capacity: int = Field(default=100, ge=1)
    stream_timeout_seconds: float = Field(default=300.0, gt=0)
    sse_ping_interval_seconds: float = Field(default=15.0, ge=0)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production")
        return vv

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in SUPPORTED_PROVIDERS:
            raise ValueError(f"LLM_PROVIDER must be one of: {', '.join(SUPPORTED_PROVIDERS)}")
        return vv

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "Settings":
        # Real upstreams need a key in production.
        if self.is_production and self.llm_provider != "mock" and not self.llm_api_key:
            raise ValueError("LLM_API_KEY is required in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
