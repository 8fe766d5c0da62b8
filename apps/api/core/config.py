"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Redis Configuration (webhook idempotency store)
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Free-tier quotas (premium is unlimited)
    FREE_DAILY_LIMIT: int = Field(default=3, ge=0)
    FREE_WEEKLY_LIMIT: int = Field(default=3, ge=0)
    # Weekly counter is always tracked; only rejects requests when enabled.
    ENFORCE_WEEKLY_LIMIT: bool = Field(default=False)

    # Session memory
    SESSION_MAX_TURNS: int = Field(default=10, ge=8, le=12)
    SESSION_IDLE_TTL_S: int = Field(default=86400)
    SESSION_SWEEP_INTERVAL_S: int = Field(default=60)
    FACT_SUMMARY_MAX_CHARS: int = Field(default=1000)

    # Generation
    GENERATION_PROVIDER: str = Field(default="gemini")  # gemini | ollama | disabled
    GENERATION_TIMEOUT_S: float = Field(default=30.0)
    GENERATION_MAX_OUTPUT_TOKENS: int = Field(default=800)
    GENERATION_TEMPERATURE: float = Field(default=0.25)
    GENERATION_HISTORY_TURNS: int = Field(default=12)
    MIN_REPLY_CHARS: int = Field(default=20)
    GEMINI_API_KEY: Optional[str] = Field(default=None)
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash")
    OLLAMA_URL: str = Field(default="http://127.0.0.1:11434")
    OLLAMA_MODEL: str = Field(default="llama3.1")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    # e.g., "https://sparkd.app,https://www.sparkd.app"
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Stripe (webhook-driven plan sync)
    STRIPE_SECRET_KEY: Optional[str] = Field(default=None)
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    BILLING_DEFAULT_PERIOD_DAYS: int = Field(default=30)
    # Processed event ids are remembered for a week; Stripe retries for three days.
    WEBHOOK_EVENT_TTL_S: int = Field(default=7 * 86400)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)


# Global settings instance
settings = Settings()
