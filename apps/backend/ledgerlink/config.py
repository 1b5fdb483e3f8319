"""Application configuration using Pydantic Settings.

Environment Variable Strategy:
- Every field has a development default so the engine runs locally without setup
- Matching heuristics are tuned separately (see services/pair_matching.py)
- Empty OpenRouter key disables the AI classification step
"""

from functools import cached_property

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_comma_list(value: str | list[str] | None, default: list[str]) -> list[str]:
    """Parse comma-separated string into list."""
    if value is None:
        return default
    if isinstance(value, list):
        return value
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./ledgerlink.db"

    # App settings
    environment: str = Field(
        default="development", validation_alias=AliasChoices("ENVIRONMENT", "ENV")
    )
    debug: bool = False
    base_currency: str = "USD"

    # CORS origins - stored as string, parsed via property
    # Env format: CORS_ORIGINS="http://localhost:3000,http://localhost:5173"
    cors_origins_str: str | None = Field(default=None, validation_alias="CORS_ORIGINS")

    # AI API (empty = AI classification disabled)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    primary_model: str = "google/gemini-3-flash-preview"
    openrouter_timeout_seconds: float = 60.0

    # Import pipeline
    classification_chunk_size: int = Field(default=20, ge=1)
    enable_auto_rules: bool = Field(default=True, validation_alias="ENABLE_AUTO_RULES")
    auto_rule_min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @cached_property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from env string or use defaults."""
        return parse_comma_list(
            self.cors_origins_str,
            [
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:3000",
            ],
        )


settings = Settings()
