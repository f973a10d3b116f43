from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    admin_api_base_url: str = Field(default="http://localhost:5000/api/admin", alias="ADMIN_API_BASE_URL")
    payout_api_base_url: str = Field(default="http://localhost:5000/api/payout", alias="PAYOUT_API_BASE_URL")
    admin_api_token: str | None = Field(default=None, alias="ADMIN_API_TOKEN")
    admin_api_timeout_seconds: float = Field(default=60.0, gt=0, alias="ADMIN_API_TIMEOUT_SECONDS")

    payout_pacing_seconds: float = Field(default=0.5, ge=0, alias="PAYOUT_PACING_SECONDS")
    search_debounce_seconds: float = Field(default=3.0, ge=0, alias="SEARCH_DEBOUNCE_SECONDS")
    default_page_size: int = Field(default=20, ge=1, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=200, ge=1, alias="MAX_PAGE_SIZE")
    session_idle_minutes: int = Field(default=30, ge=1, alias="SESSION_IDLE_MINUTES")

    rate_limit_per_minute: int = Field(default=120, alias="RATE_LIMIT_PER_MINUTE")
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5173"], alias="ALLOWED_ORIGINS"
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
