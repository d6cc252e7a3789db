"""
Streamlit entry point for the POS client.

Run with:
    streamlit run app.py
"""

from __future__ import annotations
import streamlit as st

from pos_core.data import get_cached_supabase_client
from pos_core.logging import setup_logging
from pos_core.offline import OfflineRuntime, build_offline_runtime
from pos_core.services import OrderService, SupabaseOrderGateway, order_total
from pos_core.ui import render_offline_indicator

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="POS - New Order",
    page_icon="🍽️",
    layout="wide",
)


@st.cache_resource
def get_runtime() -> OfflineRuntime:
    """One offline runtime per server process."""
    setup_logging()
    runtime = build_offline_runtime()

    client = get_cached_supabase_client()
    if client is not None:
        SupabaseOrderGateway(client).register_consumers(runtime.coordinator)

    runtime.connectivity.check_connection()
    runtime.connectivity.start_monitoring()
    runtime.sync_on_reconnect()
    return runtime


def get_order_service() -> OrderService:
    runtime = get_runtime()
    client = get_cached_supabase_client()
    gateway = SupabaseOrderGateway(client) if client is not None else None
    return OrderService(runtime, gateway)


service = get_order_service()
runtime = service.runtime

# ============================================================================
# HEADER
# ============================================================================
st.title("🍽️ New Order")
render_offline_indicator(runtime)

event_id = st.text_input("Event", value=st.session_state.get("event_id", ""))
if not event_id:
    st.info("Enter an event to load its menu.")
    st.stop()
st.session_state["event_id"] = event_id

# ============================================================================
# MENU
# ============================================================================
menu = service.fetch_menu(event_id)
if not menu:
    st.error(f"Could not load the menu: {menu.error}")
    st.stop()

if menu.metadata and menu.metadata.get("from_cache"):
    age = menu.metadata.get("cache_age_seconds") or 0
    st.caption(f"Showing cached menu ({age / 3600:.1f}h old)")

cart = st.session_state.setdefault("cart", [])

for item in menu.data:
    col1, col2, col3 = st.columns([4, 1, 1])
    with col1:
        st.markdown(f"**{item.get('name', item['id'])}** · {item.get('category', '')}")
    with col2:
        st.markdown(f"{float(item.get('price', 0)):.2f}")
    with col3:
        if st.button("Add", key=f"add_{item['id']}"):
            cart.append({
                "id": item["id"],
                "price": item.get("price", 0),
                "quantity": 1,
                "station_type": item.get("station_type"),
            })

# ============================================================================
# CART
# ============================================================================
st.subheader("Cart")
table_number = st.text_input("Table number")
guest_name = st.text_input("Guest name")
st.markdown(f"Total: **{order_total(cart):.2f}**")

if st.button("Submit order", type="primary", disabled=not cart):
    result = runtime.run_blocking(service.submit_order({
        "event_id": event_id,
        "waiter_id": st.session_state.get("waiter_id"),
        "tenant_id": st.session_state.get("tenant_id"),
        "table_number": table_number,
        "guest_name": guest_name,
        "cart": list(cart),
    }))

    if not result:
        st.error(f"Order not saved: {result.error}")
    elif isinstance(result.data, dict) and result.data.get("queued"):
        st.info("📴 Order saved offline. It will be sent when the connection is back.")
        cart.clear()
    else:
        st.success(f"✅ Order {result.data.get('order_number', '')} created")
        cart.clear()
