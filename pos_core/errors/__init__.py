# =============================================================================
# pos_core/errors/__init__.py
# Centralized Error Handling for the POS offline core
# =============================================================================

from .exceptions import (
    PosCoreError,
    PersistenceError,
    MutationNotFoundError,
    ApplyError,
    UnregisteredConsumerError,
    RemoteAuthorityError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "PosCoreError",
    "PersistenceError",
    "MutationNotFoundError",
    "ApplyError",
    "UnregisteredConsumerError",
    "RemoteAuthorityError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
]
