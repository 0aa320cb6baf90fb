import logging

import streamlit as st
from dotenv import load_dotenv

from constants.errors import ReconciliationError
from constants.schemas import ReconciliationMode
from utils.services import get_services
from utils.ui_components import (
    items_to_dataframe,
    render_header,
    render_status_chart,
    render_status_metrics,
    run_async,
)

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

# Set page configuration
st.set_page_config(
    page_title="🏍️ Iron City Fulfillment",
    page_icon="🏍️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Initialize session state
if "services" not in st.session_state:
    st.session_state.services = get_services()
if "status_filter" not in st.session_state:
    st.session_state.status_filter = st.session_state.services.settings.order_status_filter


def main():
    render_header(
        "Order Progress",
        "Every open Shopify line item with its Pinnacle stock and current progress",
    )

    services = st.session_state.services

    with st.sidebar:
        st.subheader("Filters")
        st.session_state.status_filter = st.selectbox(
            "Order status",
            ["unfulfilled", "partial", "fulfilled"],
            index=["unfulfilled", "partial", "fulfilled"].index(st.session_state.status_filter)
            if st.session_state.status_filter in ("unfulfilled", "partial", "fulfilled")
            else 0,
        )
        if st.button("🔄 Refresh"):
            st.rerun()

    try:
        result = run_async(
            services.reconciliation.reconcile(st.session_state.status_filter, ReconciliationMode.FULL)
        )
    except ReconciliationError as e:
        st.error(f"❌ Could not load order progress: {e}")
        return

    render_status_metrics(result.counts)
    render_status_chart(result.counts)

    st.subheader("Line items")
    if not result.items:
        st.info("No line items for this status.")
    else:
        st.dataframe(items_to_dataframe(result.items), use_container_width=True, hide_index=True)

    with st.expander("Debug info", expanded=False):
        st.json(result.stats.model_dump())


if __name__ == "__main__":
    main()
