# =============================================================================
# pos_core/ui/__init__.py
# Streamlit Components for the POS client
# =============================================================================

from .offline_indicator import (
    format_outcome,
    render_dead_letters,
    render_offline_indicator,
    render_sync_outcome,
)

__all__ = [
    "format_outcome",
    "render_dead_letters",
    "render_offline_indicator",
    "render_sync_outcome",
]
