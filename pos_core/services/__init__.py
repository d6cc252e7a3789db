# =============================================================================
# pos_core/services/__init__.py
# Business Logic Services
# =============================================================================

from .base_service import BaseService, ServiceResult
from .order_service import OrderService, SupabaseOrderGateway, order_total

__all__ = [
    "BaseService",
    "ServiceResult",
    "OrderService",
    "SupabaseOrderGateway",
    "order_total",
]
