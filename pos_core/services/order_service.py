# =============================================================================
# pos_core/services/order_service.py
# Order Service - Order Taking with Offline Fallback
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional

from .base_service import BaseService, ServiceResult
from pos_core.errors import RemoteAuthorityError
from pos_core.offline import MutationKind, OfflineRuntime, SyncCoordinator, read_through


ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"
MENU_ITEMS_TABLE = "menu_items"

# Order header columns written to the orders table
ORDER_FIELDS = (
    "event_id",
    "waiter_id",
    "tenant_id",
    "table_number",
    "guest_name",
    "status",
    "total_amount",
)

REQUIRED_ORDER_FIELDS = ("event_id", "table_number", "cart")


def order_total(cart: List[Dict[str, Any]]) -> float:
    """Sum of price * quantity over the cart lines."""
    return round(
        sum(float(line.get("price", 0)) * int(line.get("quantity", 1)) for line in cart),
        2,
    )


class SupabaseOrderGateway:
    """
    Remote authority for orders, backed by Supabase.

    The async create_order/update_order methods double as the sync
    consumers for the CREATE and UPDATE mutation kinds.

    Usage:
        gateway = SupabaseOrderGateway(get_supabase_client())
        gateway.register_consumers(runtime.coordinator)
    """

    def __init__(self, client: Any):
        self.client = client

    def _call(self, table: str, operation: str, func):
        try:
            return func()
        except RemoteAuthorityError:
            raise
        except Exception as e:
            raise RemoteAuthorityError(
                f"{operation} on '{table}' failed: {e}",
                table=table,
                operation=operation,
            ) from e

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_order_record(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an order with its line items.

        The order number is allocated server-side per event, so it is only
        known once the order reaches the remote authority.

        Returns:
            The inserted orders row
        """
        event_id = payload["event_id"]

        order_number = self._call(
            ORDERS_TABLE,
            "generate_order_number",
            lambda: self.client.rpc(
                "generate_order_number", {"_event_id": event_id}
            ).execute().data,
        )

        row = {name: payload.get(name) for name in ORDER_FIELDS}
        row["status"] = row["status"] or "pending"
        row["order_number"] = order_number

        inserted = self._call(
            ORDERS_TABLE,
            "insert",
            lambda: self.client.table(ORDERS_TABLE).insert(row).execute().data,
        )
        if not inserted:
            raise RemoteAuthorityError(
                "Order insert returned no row",
                table=ORDERS_TABLE,
                operation="insert",
            )
        order = inserted[0]

        items = [
            {
                "order_id": order["id"],
                "menu_item_id": line["id"],
                "quantity": line.get("quantity", 1),
                "price": line.get("price"),
                "station_type": line.get("station_type"),
                "tenant_id": payload.get("tenant_id"),
                "status": "pending",
            }
            for line in payload.get("cart") or []
        ]
        if items:
            self._call(
                ORDER_ITEMS_TABLE,
                "insert",
                lambda: self.client.table(ORDER_ITEMS_TABLE).insert(items).execute(),
            )

        return order

    def update_order_record(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Apply {"order_id", "changes"} and return the updated rows."""
        order_id = payload["order_id"]
        changes = payload.get("changes") or {}
        return self._call(
            ORDERS_TABLE,
            "update",
            lambda: self.client.table(ORDERS_TABLE)
            .update(changes)
            .eq("id", order_id)
            .execute()
            .data,
        ) or []

    async def create_order(self, payload: Dict[str, Any]) -> bool:
        order = await asyncio.to_thread(self.create_order_record, payload)
        return bool(order)

    async def update_order(self, payload: Dict[str, Any]) -> bool:
        # No matching row means the remote authority rejected the update
        rows = await asyncio.to_thread(self.update_order_record, payload)
        return bool(rows)

    def register_consumers(self, coordinator: SyncCoordinator, replace: bool = False) -> None:
        """Bind this gateway as the consumer for order mutations."""
        coordinator.register_consumer(MutationKind.CREATE, self.create_order, replace=replace)
        coordinator.register_consumer(MutationKind.UPDATE, self.update_order, replace=replace)

    # =========================================================================
    # READS
    # =========================================================================

    def fetch_menu_items(self, event_id: str) -> List[Dict[str, Any]]:
        """Available menu items for an event, grouped by category."""
        return self._call(
            MENU_ITEMS_TABLE,
            "select",
            lambda: self.client.table(MENU_ITEMS_TABLE)
            .select("*")
            .eq("event_id", event_id)
            .eq("is_available", True)
            .order("category")
            .execute()
            .data,
        ) or []

    def fetch_orders(self, event_id: str) -> List[Dict[str, Any]]:
        """Orders for an event, newest first."""
        return self._call(
            ORDERS_TABLE,
            "select",
            lambda: self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("event_id", event_id)
            .order("created_at", desc=True)
            .execute()
            .data,
        ) or []


class OrderService(BaseService):
    """
    Service for order taking.

    Handles:
    - Submitting new orders (live, or queued while offline)
    - Updating orders (live, or queued while offline)
    - Menu and order reads with snapshot fallback

    Usage:
        service = OrderService(runtime, gateway)

        result = await service.submit_order(order)
        if result and result.data.get("queued"):
            st.info("Order saved offline, it will sync when back online")
    """

    def __init__(self, runtime: OfflineRuntime, gateway: Optional[SupabaseOrderGateway] = None):
        super().__init__()
        self.runtime = runtime
        self.gateway = gateway

    @property
    def is_live(self) -> bool:
        return self.gateway is not None and self.runtime.connectivity.is_reachable

    async def _queue(self, kind: MutationKind, payload: Dict[str, Any]) -> ServiceResult:
        result = await self.safe_execute_async(
            f"Queueing {kind.value} mutation",
            self.runtime.enqueue,
            kind,
            payload,
        )
        if not result:
            return result
        return ServiceResult.ok(
            {"queued": True, "mutation_id": result.data},
            metadata={"pending_count": self.runtime.pending_count()},
        )

    async def submit_order(self, order: Dict[str, Any]) -> ServiceResult:
        """
        Submit a new order.

        Args:
            order: Order header fields plus a "cart" of
                {id, price, quantity, station_type} lines

        Returns:
            ServiceResult with the created order row, or
            {"queued": True, "mutation_id": ...} when taken offline
        """
        missing = [name for name in REQUIRED_ORDER_FIELDS if not order.get(name)]
        if missing:
            return ServiceResult.fail(
                f"Missing required order fields: {missing}",
                error_code="ORDER_001",
            )

        payload = dict(order)
        payload.setdefault("status", "pending")
        if payload.get("total_amount") is None:
            payload["total_amount"] = order_total(payload["cart"])

        if not self.is_live:
            return await self._queue(MutationKind.CREATE, payload)

        return await self.safe_execute_async(
            "Creating order",
            asyncio.to_thread,
            self.gateway.create_order_record,
            payload,
        )

    async def update_order(self, order_id: str, changes: Dict[str, Any]) -> ServiceResult:
        """Update an existing order, queueing the change while offline."""
        if not order_id:
            return ServiceResult.fail("order_id is required", error_code="ORDER_001")

        payload = {"order_id": order_id, "changes": dict(changes)}
        if not self.is_live:
            return await self._queue(MutationKind.UPDATE, payload)

        result = await self.safe_execute_async(
            f"Updating order {order_id}",
            asyncio.to_thread,
            self.gateway.update_order_record,
            payload,
        )
        if result and not result.data:
            return ServiceResult.fail(f"Order {order_id} not found", error_code="ORDER_002")
        return result

    def _read(self, operation: str, key: str, fetch) -> ServiceResult:
        result = self.safe_execute(
            operation,
            read_through,
            self.runtime.snapshots,
            key,
            fetch,
            self.runtime.connectivity,
        )
        if not result:
            return result
        value, from_cache = result.data
        metadata = {"from_cache": from_cache}
        if from_cache:
            metadata["cache_age_seconds"] = self.runtime.snapshots.get_age(key)
        return ServiceResult.ok(value, metadata=metadata)

    def _require_gateway(self):
        raise RemoteAuthorityError("Remote authority is not configured", operation="select")

    def fetch_menu(self, event_id: str) -> ServiceResult:
        """Menu for an event; metadata["from_cache"] marks snapshot data."""
        fetch = (
            (lambda: self.gateway.fetch_menu_items(event_id))
            if self.gateway is not None
            else self._require_gateway
        )
        return self._read(f"Loading menu for {event_id}", f"menu:{event_id}", fetch)

    def fetch_orders(self, event_id: str) -> ServiceResult:
        """Orders for an event; metadata["from_cache"] marks snapshot data."""
        fetch = (
            (lambda: self.gateway.fetch_orders(event_id))
            if self.gateway is not None
            else self._require_gateway
        )
        return self._read(f"Loading orders for {event_id}", f"orders:{event_id}", fetch)
