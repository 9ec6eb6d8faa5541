from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Completion service
    llm_model: str = "gpt-4o"
    temperature: float = Field(default=0.0, ge=0.0)
    max_tokens: int = Field(default=16384, gt=0)

    # Batching / windowing
    batch_size: int = Field(default=100, gt=0)
    window_size: int = Field(default=300, gt=0)
    window_overlap: int = Field(default=30, ge=0)

    # Retry and pacing
    max_attempts: int = Field(default=3, gt=0)
    retry_delay_seconds: float = Field(default=5.0, ge=0.0)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0)

    # Storage
    artifact_dir: str = "batches"
    output_dir: str = "."

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @model_validator(mode="after")
    def check_overlap(self) -> Settings:
        if self.window_overlap >= self.window_size:
            raise ValueError(
                f"window_overlap ({self.window_overlap}) must be smaller than "
                f"window_size ({self.window_size})"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load the run settings once per process.

    The CLI reads credentials, model and batching parameters from here. A
    ``.env`` that exists but cannot be read is skipped with a warning and
    the process environment alone is used.
    """
    try:
        return Settings()
    except OSError as e:
        logger.warning("Ignoring unreadable .env file (%s); using environment only", e)
        return Settings(_env_file=None)  # type: ignore[call-arg]
