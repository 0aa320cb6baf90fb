import streamlit as st

from constants.errors import ReconciliationError
from constants.schemas import ReconciliationMode
from utils.services import get_services
from utils.ui_components import (
    render_header,
    render_item_card,
    render_pending_confirmation,
    render_pick_actions,
    run_async,
)

st.set_page_config(layout="wide")

if "services" not in st.session_state:
    st.session_state.services = get_services()

render_header(
    "Picklist",
    "Orders with items nobody has started yet. Items leave this list once they have progress.",
)

services = st.session_state.services

if render_pending_confirmation():
    st.rerun()

try:
    result = run_async(
        services.reconciliation.reconcile(
            services.settings.order_status_filter, ReconciliationMode.FILTERING
        )
    )
except ReconciliationError as e:
    st.error(f"❌ Could not load the picklist: {e}")
    st.stop()

st.caption(
    f"{result.stats.final_item_count} items across {result.stats.final_order_count} orders "
    f"({result.stats.time_taken}s)"
)

if not result.orders:
    st.success("Nothing left to pick 🎉")

for order in result.orders:
    with st.container(border=True):
        st.markdown(f"#### {order.order_number} · {order.customer_name or ''}")
        for item in order.items:
            left, right = st.columns([2, 3])
            with left:
                render_item_card(item)
                if item.sku:
                    already_picked = run_async(services.reconciliation.total_picked_for_sku(item.sku))
                    if already_picked:
                        st.caption(f"{already_picked} of {item.sku} already picked on other orders")
            with right:
                if render_pick_actions(item, key_prefix="picklist"):
                    st.rerun()
