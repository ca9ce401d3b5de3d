from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./statement_converter.db"

    quota_backend: Literal["sql", "memory"] = "sql"
    quota_memory_max_entries: int = 10000
    quota_charge_policy: Literal["attempt", "valid_attempt"] = "attempt"
    anonymous_daily_limit: int = 3
    authenticated_daily_limit: int = 20

    max_upload_bytes: int = 10 * 1024 * 1024
    xlsx_mode: Literal["tsv", "workbook"] = "tsv"

    ai_api_key: str | None = None
    ai_base_url: str = "https://ai.gateway.lovable.dev/v1"
    ai_model: str = "google/gemini-3-flash-preview"
    ai_max_tokens: int = 8000
    ai_timeout_seconds: float = 60.0

    access_token_exp_minutes: int = 60 * 24


settings = Settings()
