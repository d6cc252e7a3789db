# =============================================================================
# pos_core/services/base_service.py
# Shared Result Type and Error Boundary for POS Services
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Awaitable, Callable
from dataclasses import dataclass

from pos_core.logging import get_logger, LogContext
from pos_core.errors import handle_error, PosCoreError


@dataclass
class ServiceResult:
    """
    Outcome of a service call as seen by the UI.

    `metadata` carries call-specific extras, e.g. `from_cache` on reads
    served from a snapshot or `pending_count` after a queued write.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        return cls(success=False, error=error, error_code=error_code, metadata=metadata)

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """PosCoreError keeps its code and details; anything else is EXCEPTION."""
        if isinstance(e, PosCoreError):
            return cls.fail(e.message, error_code=e.code, metadata=e.details)
        return cls.fail(str(e), error_code="EXCEPTION")


class BaseService(ABC):
    """
    Services never raise into Streamlit pages: every call is wrapped so
    the page gets a ServiceResult and the log gets the traceback.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        return LogContext(self.logger, operation)

    def _result_for(self, operation: str, error: Exception) -> ServiceResult:
        if isinstance(error, PosCoreError):
            handle_error(error, show_user_message=False)
        else:
            self.logger.error(f"{operation} failed: {error}", exc_info=True)
        return ServiceResult.from_exception(error)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """Run a blocking call (e.g. a Supabase read) behind the error boundary."""
        with self.log_operation(operation):
            try:
                return ServiceResult.ok(func(*args, **kwargs))
            except Exception as e:
                return self._result_for(operation, e)

    async def safe_execute_async(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> ServiceResult:
        """Coroutine counterpart of safe_execute(), used for queue writes."""
        with self.log_operation(operation):
            try:
                return ServiceResult.ok(await func(*args, **kwargs))
            except Exception as e:
                return self._result_for(operation, e)
