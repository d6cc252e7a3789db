# =============================================================================
# pos_core/__init__.py
# POS Core - offline-tolerant order taking
# =============================================================================

__version__ = "1.0.0"
