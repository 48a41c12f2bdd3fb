"""Configuration management using Pydantic Settings"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="POCKET_CHAT_",
        extra="ignore",
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Storage
    data_dir: Path = Path("data")
    persistence_backend: Literal["json", "sqlite"] = "json"
    catalog_path: Path | None = None

    # Native inference endpoint (OpenAI-compatible local server)
    inference_base_url: str = "http://localhost:8080/v1"
    inference_api_key: str = "local"

    # Context budget policy
    default_context_limit: int = 4096
    response_reserve_ratio: float = 0.30
    archive_trigger_ratio: float = 0.70
    archive_target_ratio: float = 0.50
    tokens_per_word: float = 1.3
    min_response_tokens: int = 128
    container_response_token_cap: int = 512

    # Repetition/length guard
    prompt_echo_threshold: int = 3
    duplicate_line_threshold: int = 4
    min_duplicate_line_length: int = 8
    max_sentences: int = 3
    sentence_limit_min_length: int = 80
    max_response_characters: int = 1200
    guard_conversation_backend: bool = False

    # Container backend sampling
    container_max_response_tokens: int = 256
    container_temperature: float = 0.35
    container_top_p: float = 0.85
    container_repetition_penalty: float = 1.15
    container_repetition_context_size: int = 128
    container_stop_sequences: list[str] = ["<end_of_turn>", "<start_of_turn>"]

    # Model files
    min_model_file_bytes: int = 1024

    # Titles
    title_generation_enabled: bool = True
    title_token_limit: int = 64

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> LogLevel:
        """Validate log level, fallback to INFO if invalid."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            return "INFO"
        return upper_v  # type: ignore[return-value]

    @property
    def conversations_dir(self) -> Path:
        return self.data_dir / "conversations"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "pocket_chat.db"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance. Use this for dependency injection."""
    return Settings()


# For backward compatibility and simple imports
settings = get_settings()
