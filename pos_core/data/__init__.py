# =============================================================================
# pos_core/data/__init__.py
# Remote Authority Access
# =============================================================================

from .supabase_client import get_supabase_client, get_cached_supabase_client

__all__ = ["get_supabase_client", "get_cached_supabase_client"]
