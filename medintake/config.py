# medintake/config.py
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field(
        "sqlite:///./medintake.db", validation_alias="DATABASE_URL"
    )

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    llm_model: str = Field("gpt-4o-mini", validation_alias="LLM_MODEL")

    # Oracle retry contract: retries on top of the first attempt
    oracle_max_retries: int = Field(2, ge=0, le=2, validation_alias="ORACLE_MAX_RETRIES")
    oracle_retry_base_delay: float = Field(
        1.0, ge=0.0, validation_alias="ORACLE_RETRY_BASE_DELAY"
    )
    oracle_timeout: float = Field(30.0, gt=0.0, validation_alias="ORACLE_TIMEOUT")

    # Context window handed to the sufficiency judge
    context_window_turns: int = Field(
        10, ge=6, le=20, validation_alias="CONTEXT_WINDOW_TURNS"
    )
    context_max_chars: int = Field(200, ge=20, validation_alias="CONTEXT_MAX_CHARS")

    session_ttl_seconds: int = Field(3600, gt=0, validation_alias="SESSION_TTL_SECONDS")
    intake_language: Literal["en", "ja"] = Field("en", validation_alias="INTAKE_LANGUAGE")
    strict_question_references: bool = Field(
        False, validation_alias="STRICT_QUESTION_REFERENCES"
    )
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
