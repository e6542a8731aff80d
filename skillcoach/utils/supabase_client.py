"""Supabase (PostgREST) client factory shared by the Supabase-backed stores."""

from __future__ import annotations

from functools import lru_cache

from supabase import Client, create_client

from skillcoach.utils.errors import StoreUnavailable
from skillcoach.utils.settings import get_settings


@lru_cache(maxsize=4)
def _client_for(url: str, key: str) -> Client:
    return create_client(url, key)


def get_supabase_client() -> Client:
    """Return a client for SUPABASE_URL/SUPABASE_KEY; one instance per credential pair."""
    settings = get_settings()
    url = (settings.supabase_url or "").strip()
    key = (settings.supabase_key or "").strip()
    if not url or not key:
        raise StoreUnavailable("SUPABASE_URL and SUPABASE_KEY must be set")
    return _client_for(url, key)
