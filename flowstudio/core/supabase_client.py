"""
Supabase client factory.

The client is synchronous; callers in async code run ``execute()`` through
``asyncio.to_thread``.
"""

from functools import lru_cache

from supabase import create_client, Client

from .config import get_settings
from .exceptions import MissingConfigError
from .logging_config import get_logger

logger = get_logger("core.supabase")


@lru_cache()
def get_supabase_client() -> Client:
    """Get a Supabase client, preferring the service key when configured."""
    settings = get_settings()
    if not settings.supabase_url:
        raise MissingConfigError("FLOWSTUDIO_SUPABASE_URL is not set")

    key = settings.supabase_service_key or settings.supabase_anon_key
    if not key:
        raise MissingConfigError(
            "No Supabase key configured",
            {"expected": ["FLOWSTUDIO_SUPABASE_SERVICE_KEY", "FLOWSTUDIO_SUPABASE_ANON_KEY"]}
        )
    if not settings.supabase_service_key:
        logger.warning("No service key configured - using anon key")

    return create_client(settings.supabase_url, key)
