from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SHORT_TERM_WINDOW = 20
DEFAULT_MAX_FACTS = 200


class Settings(BaseSettings):
    """Application configuration (env prefix OPENPAW_)."""

    model_config = SettingsConfigDict(
        env_prefix="OPENPAW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Memory
    memory_dir: Path = Path("openpaw-memory")
    short_term_window: int = DEFAULT_SHORT_TERM_WINDOW
    max_facts: int = DEFAULT_MAX_FACTS

    # Logging
    log_level: str = "INFO"

    @field_validator("short_term_window", "max_facts", mode="before")
    @classmethod
    def _empty_str_to_default(cls, v: object, info) -> object:
        """Empty string from an env var → default."""
        if isinstance(v, str) and v.strip() == "":
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("short_term_window", "max_facts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


settings = Settings()
