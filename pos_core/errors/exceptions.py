# =============================================================================
# pos_core/errors/exceptions.py
# Custom Exception Hierarchy for the POS offline core
# =============================================================================

from typing import Optional, Dict, Any


class PosCoreError(Exception):
    """
    Base exception for all POS core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "POS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# DEVICE STORAGE EXCEPTIONS
# =============================================================================

class PersistenceError(PosCoreError):
    """Raised when durable device storage cannot be read or written"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


class MutationNotFoundError(PosCoreError):
    """Raised when a queued mutation id is not present in the store"""

    def __init__(self, mutation_id: str, **kwargs):
        details = kwargs.pop("details", {})
        details["mutation_id"] = mutation_id

        super().__init__(
            message=f"Mutation {mutation_id} is not queued",
            code="STORE_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNCHRONIZATION EXCEPTIONS
# =============================================================================

class ApplyError(PosCoreError):
    """Raised when a queued mutation could not be applied remotely"""

    def __init__(
        self,
        message: str,
        mutation_id: Optional[str] = None,
        kind: Optional[str] = None,
        code: str = "SYNC_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if mutation_id:
            details["mutation_id"] = mutation_id
        if kind:
            details["kind"] = kind

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class UnregisteredConsumerError(ApplyError):
    """Raised when no consumer is bound to a mutation kind"""

    def __init__(self, kind: str, **kwargs):
        super().__init__(
            message=f"No consumer registered for mutation kind '{kind}'",
            kind=kind,
            code="SYNC_002",
            **kwargs,
        )


# =============================================================================
# REMOTE AUTHORITY EXCEPTIONS
# =============================================================================

class RemoteAuthorityError(PosCoreError):
    """Raised when a call to the remote system of record fails"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(PosCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
