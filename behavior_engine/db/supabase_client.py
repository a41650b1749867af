"""Supabase client for the behavior engine tables."""

from functools import lru_cache

from supabase import Client, create_client

from behavior_engine.core.config import get_settings
from behavior_engine.core.errors import ConfigurationError


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Shared service-role client for conversation state, transitions, flows and triggers.

    Raises:
        ConfigurationError: If the URL or key is missing, or the client
            cannot be built from them
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise ConfigurationError(f"Invalid Supabase configuration for {settings.SUPABASE_URL}: {e}") from e
