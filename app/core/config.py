"""Configuration management for the Frizy context engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.context.errors import InvalidConfiguration
from app.context.models import ContextEngineConfig

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Anthropic configuration (optional - summarizer falls back without it)
    ANTHROPIC_API_KEY: str | None = Field(
        default=None, description="Anthropic API key for context summarization"
    )

    # Environment
    CONTEXT_ENGINE_ENV: str = Field(
        default="dev", description="Environment: dev, staging, prod, test"
    )

    # Summarization
    SUMMARIZATION_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for context compression"
    )
    SUMMARIZATION_TIMEOUT_SECONDS: float = Field(
        default=20.0, description="Seconds to wait for a summary before falling back"
    )
    SUMMARIZATION_TEMPERATURE: float = Field(
        default=0.3, description="Sampling temperature for summaries"
    )
    SUMMARIZATION_MAX_OUTPUT_TOKENS: int = Field(
        default=1000, description="Upper bound on summary completion tokens"
    )

    # Context preview budgeting
    CONTEXT_DEFAULT_MAX_TOKENS: int = Field(
        default=4000, description="Default token budget for a context preview"
    )
    CONTEXT_SUMMARY_RESERVE_RATIO: float = Field(
        default=0.2, description="Share of the budget reserved for the trailing summary"
    )
    CONTEXT_HIGH_VALUE_THRESHOLD: float = Field(
        default=0.7, description="Score above which over-budget items are compressed"
    )
    CONTEXT_FALLBACK_ITEM_COUNT: int = Field(
        default=3, description="Items surfaced by the local fallback summary"
    )
    CONTEXT_FALLBACK_TRUNCATE_CHARS: int = Field(
        default=100, description="Body length of each fallback item"
    )
    CONTEXT_KNOWLEDGE_ITEM_LIMIT: int = Field(
        default=50, description="Most recent captured-knowledge rows read per preview"
    )
    CONTEXT_EXTERNAL_ACTIVITY_LIMIT: int = Field(
        default=50, description="Most recent external-activity rows read per preview"
    )

    # Session boundaries
    SESSION_CONTEXT_LIMIT_TOKENS: int = Field(
        default=160_000, description="Context usage above which a session rotates"
    )
    SESSION_INACTIVITY_MINUTES: int = Field(
        default=120, description="Idle minutes after which a session rotates"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()


def get_engine_config() -> ContextEngineConfig:
    """
    Build the context engine tunables from settings.

    Raises:
        InvalidConfiguration: If a tunable is out of range
    """
    settings = get_settings()
    try:
        return ContextEngineConfig(
            default_max_tokens=settings.CONTEXT_DEFAULT_MAX_TOKENS,
            summary_reserve_ratio=settings.CONTEXT_SUMMARY_RESERVE_RATIO,
            high_value_threshold=settings.CONTEXT_HIGH_VALUE_THRESHOLD,
            fallback_item_count=settings.CONTEXT_FALLBACK_ITEM_COUNT,
            fallback_truncate_chars=settings.CONTEXT_FALLBACK_TRUNCATE_CHARS,
            knowledge_item_limit=settings.CONTEXT_KNOWLEDGE_ITEM_LIMIT,
            external_activity_limit=settings.CONTEXT_EXTERNAL_ACTIVITY_LIMIT,
            context_limit_tokens=settings.SESSION_CONTEXT_LIMIT_TOKENS,
            inactivity_minutes=settings.SESSION_INACTIVITY_MINUTES,
        )
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid context engine settings: {e}") from e
