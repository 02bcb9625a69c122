"""Configuration management for the TraceLayer extraction engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

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

    # Anthropic configuration (empty means extraction is not configured)
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")

    # Environment
    TRACELAYER_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Extraction agents
    EXTRACTION_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for extraction agents"
    )
    EXTRACTION_MAX_TOKENS: int = Field(default=16384, description="Max output tokens per agent call")
    DOCUMENT_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for BRD generation"
    )
    DOCUMENT_MAX_TOKENS: int = Field(default=32768, description="Max output tokens for BRD generation")

    # Source chunking for requirement extraction
    CHUNK_SIZE_CHARS: int = Field(default=35_000, description="Max characters per extraction chunk")
    CHUNK_OVERLAP_CHARS: int = Field(default=2_000, description="Overlap between adjacent chunks")
    MAX_CONTEXT_CHARS: int = Field(
        default=60_000, description="Max combined source characters for cross-source agents"
    )

    # Run orchestration
    RUN_SCAN_LIMIT: int = Field(default=5, description="Recent runs scanned for an active run")
    RUN_HISTORY_LIMIT: int = Field(default=20, description="Runs returned in run history")
    STAGE_MAX_RETRIES: int = Field(default=2, description="Retries per agent call on transient errors")
    STAGE_RETRY_BACKOFF_SECONDS: float = Field(
        default=1.0, description="Initial backoff delay, doubled per retry"
    )

    # Quality thresholds
    LOW_CONFIDENCE_THRESHOLD: float = Field(
        default=0.5, description="Requirements below this are flagged as low confidence"
    )
    HIGH_CONFIDENCE_THRESHOLD: float = Field(
        default=0.8, description="Requirements at or above this are high confidence"
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
