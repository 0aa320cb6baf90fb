import pandas as pd
import streamlit as st

from constants.errors import StorageError
from utils.hd_excel_parser import parse_hd_order_lines
from utils.services import get_services
from utils.ui_components import render_header, run_async

st.set_page_config(layout="wide")

if "services" not in st.session_state:
    st.session_state.services = get_services()

render_header(
    "HD Order Lines Upload",
    "Replace the stored line items of each HD order in the file. Checked-in lines are skipped.",
)

services = st.session_state.services

uploaded = st.file_uploader("HD order lines export (.xlsx)", type=["xlsx"])

if uploaded is not None:
    try:
        lines = parse_hd_order_lines(uploaded)
    except ValueError as e:
        st.error(f"❌ {e}")
        st.stop()

    preview = pd.DataFrame([line.model_dump() for line in lines])
    order_numbers = sorted({line.hd_order_number for line in lines if line.hd_order_number})
    st.markdown(f"**{len(lines)} lines** across **{len(order_numbers)} HD orders**")
    st.dataframe(preview.head(50), use_container_width=True, hide_index=True)

    if st.button("🚀 Import line items", type="primary"):
        progress_bar = st.progress(0.0, text="Importing...")
        stats = run_async(services.hd_importer.import_order_lines(lines, uploaded.name))
        progress_bar.progress(1.0, text="Done")

        metric_cols = st.columns(4)
        metric_cols[0].metric("Processed", stats.processed)
        metric_cols[1].metric("Replaced", stats.replaced)
        metric_cols[2].metric("Excluded", stats.skipped)
        metric_cols[3].metric("Errors", stats.errors)

        if stats.errors:
            st.warning(f"⚠️ {stats.errors} errors; check the logs for the affected HD orders.")
        else:
            st.success("✅ Import complete")

st.divider()
st.subheader("📄 Orders needing line items")
st.caption("HD orders with no stored line items, leaving out orders excluded as a whole.")

try:
    waiting = run_async(services.hd_importer.list_orders_needing_line_items())
except StorageError as e:
    st.error(f"❌ {e}")
    waiting = []

if waiting:
    st.dataframe(
        pd.DataFrame(
            [
                {
                    "HD Order": order.hd_order_number,
                    "Dealer PO": order.dealer_po_number or "-",
                    "Order Type": order.order_type or "-",
                    "Order Date": order.order_date or "-",
                }
                for order in waiting
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )
else:
    st.info("No orders found that need line items.")
