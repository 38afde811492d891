"""Supabase client shared by the knowledge store and the session ledger."""

from functools import lru_cache

from supabase import Client, create_client

from app.context.errors import UpstreamUnavailable
from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get Supabase client instance (cached singleton).

    Returns:
        Supabase client configured with service role key

    Raises:
        UpstreamUnavailable: If the client cannot be initialized
    """
    try:
        settings = get_settings()
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        raise UpstreamUnavailable(f"Failed to initialize Supabase client: {e}") from e
