"""Configuration settings for the daybook reconciliation core."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Client-side debounce floor for search-style triggers
MIN_SEARCH_DEBOUNCE_MS = 500


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend API
    api_url: str = Field(
        default="http://localhost:5000/api", validation_alias="DAYBOOK_API_URL"
    )
    api_token: SecretStr | None = Field(default=None, validation_alias="DAYBOOK_API_TOKEN")
    company_id: str | None = Field(default=None, validation_alias="DAYBOOK_COMPANY_ID")
    timeout: float = Field(default=30.0, validation_alias="DAYBOOK_TIMEOUT")

    # Client behavior
    search_debounce_ms: int = Field(
        default=MIN_SEARCH_DEBOUNCE_MS, validation_alias="DAYBOOK_SEARCH_DEBOUNCE_MS"
    )
    paid_amount_policy: Literal["max", "ledger_first"] = Field(
        default="max", validation_alias="DAYBOOK_PAID_AMOUNT_POLICY"
    )
    currency: str = Field(default="INR", validation_alias="DAYBOOK_CURRENCY")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @field_validator("search_debounce_ms")
    @classmethod
    def _debounce_floor(cls, value: int) -> int:
        if value < MIN_SEARCH_DEBOUNCE_MS:
            raise ValueError(
                f"search debounce must be at least {MIN_SEARCH_DEBOUNCE_MS}ms"
            )
        return value

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
