"""Supabase client initialization."""

from functools import lru_cache

from supabase import Client, create_client

from tracelayer.core.config import get_settings
from tracelayer.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Cached service-role client shared by every db module.

    Raises:
        RuntimeError: If the client cannot be created from settings
    """
    settings = get_settings()
    try:
        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client for {settings.SUPABASE_URL}: {e}") from e

    logger.info("Connected to Supabase", extra={"env": settings.TRACELAYER_ENV})
    return client
