"""Application configuration."""
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = Field(default="refund-agents", validation_alias="APP_NAME")
    environment: str = Field(default="dev", validation_alias="ENVIRONMENT")
    api_prefix: str = Field(default="/api/v1", validation_alias="API_PREFIX")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    database_path: Path = Field(default=Path("artifacts/refund_agents.sqlite"), validation_alias="DATABASE_PATH")

    llm_api_key: str | None = Field(default=None, validation_alias="LLM_API_KEY")
    llm_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="LLM_BASE_URL",
    )
    llm_timeout_seconds: float = Field(default=120.0, gt=0, validation_alias="LLM_TIMEOUT_SECONDS")
    safety_threshold: str = Field(default="BLOCK_MEDIUM_AND_ABOVE", validation_alias="SAFETY_THRESHOLD")

    extraction_model: str = Field(default="gemini-2.5-flash", validation_alias="EXTRACTION_MODEL")
    analysis_model: str = Field(default="gemini-3-pro-preview", validation_alias="ANALYSIS_MODEL")
    drafting_model: str = Field(default="gemini-3-pro-preview", validation_alias="DRAFTING_MODEL")
    chat_model: str = Field(default="gemini-2.5-flash", validation_alias="CHAT_MODEL")

    extraction_temperature: float = Field(default=0.1, ge=0, le=2, validation_alias="EXTRACTION_TEMPERATURE")
    analysis_temperature: float = Field(default=0.3, ge=0, le=2, validation_alias="ANALYSIS_TEMPERATURE")
    drafting_temperature: float = Field(default=0.7, ge=0, le=2, validation_alias="DRAFTING_TEMPERATURE")

    autosave_interval_seconds: float = Field(default=60.0, gt=0, validation_alias="AUTOSAVE_INTERVAL_SECONDS")
    min_notes_length: int = Field(default=10, ge=0, validation_alias="MIN_NOTES_LENGTH")
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, ge=1, validation_alias="MAX_UPLOAD_BYTES")
    default_language: str = Field(default="en", validation_alias="DEFAULT_LANGUAGE")

    class Config:
        env_prefix = ""
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings()
