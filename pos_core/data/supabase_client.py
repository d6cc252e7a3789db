# =============================================================================
# pos_core/data/supabase_client.py
# Supabase Client Configuration for the POS client
# =============================================================================

from __future__ import annotations
import os
from typing import Any, Optional
import logging

import streamlit as st

logger = logging.getLogger(__name__)


def _credentials_from_secrets() -> tuple[Optional[str], Optional[str]]:
    try:
        if "supabase" in st.secrets:
            section = st.secrets["supabase"]
            return section.get("url"), section.get("key")
    except FileNotFoundError:
        pass
    return None, None


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Optional[Any]:
    """
    Initialize and return a Supabase client.

    Credentials are taken from the arguments, then Streamlit secrets, then
    the SUPABASE_URL / SUPABASE_KEY environment variables:

        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

    Returns:
        Supabase client instance or None if not configured
    """
    from supabase import create_client

    if not (url and key):
        secret_url, secret_key = _credentials_from_secrets()
        url = url or secret_url or os.getenv("SUPABASE_URL")
        key = key or secret_key or os.getenv("SUPABASE_KEY")

    if not (url and key):
        logger.warning("Supabase credentials not configured; running local-only")
        return None

    return create_client(url, key)


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client() -> Optional[Any]:
    """Supabase client shared across Streamlit sessions."""
    return get_supabase_client()
