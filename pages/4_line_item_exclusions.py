import streamlit as st

from constants.errors import ExclusionError
from utils.services import get_services
from utils.ui_components import render_header, run_async

st.set_page_config(layout="wide")

if "services" not in st.session_state:
    st.session_state.services = get_services()

render_header(
    "HD Exclusions",
    "Lines and orders listed here are never re-imported from HD uploads.",
)

exclusions = st.session_state.services.exclusions

line_tab, order_tab = st.tabs(["Line items", "Whole orders"])

with line_tab:
    with st.form("add_line_exclusion", clear_on_submit=True):
        cols = st.columns(4)
        hd_order_number = cols[0].text_input("HD order number")
        line_number = cols[1].text_input("Line number")
        part_number = cols[2].text_input("Part number")
        reason = cols[3].selectbox("Reason", ["Check In", "Not Shopify"])
        if st.form_submit_button("Add exclusion"):
            try:
                run_async(
                    exclusions.add_line_exclusion(
                        hd_order_number, line_number or None, part_number or None, reason
                    )
                )
                st.success(f"✅ Excluded line {line_number or part_number} of {hd_order_number}")
            except ExclusionError as e:
                st.error(f"❌ {e}")

    try:
        records = run_async(exclusions.list_exclusions())
    except ExclusionError as e:
        st.error(f"❌ {e}")
        records = []

    if not records:
        st.info("No line exclusions yet.")
    for record in records:
        cols = st.columns([2, 1, 2, 2, 1])
        cols[0].write(record.hd_order_number)
        cols[1].write(record.line_number or "-")
        cols[2].write(record.part_number or "-")
        cols[3].write(record.reason)
        if cols[4].button("Remove", key=f"remove_{record.id}"):
            try:
                run_async(exclusions.remove_exclusion(record.id))
                st.rerun()
            except ExclusionError as e:
                st.error(f"❌ {e}")

with order_tab:
    with st.form("add_order_exclusion", clear_on_submit=True):
        cols = st.columns(2)
        order_number = cols[0].text_input("HD order number")
        order_reason = cols[1].text_input("Reason")
        if st.form_submit_button("Exclude order"):
            try:
                run_async(exclusions.add_order_exclusion(order_number, order_reason))
                st.success(f"✅ Excluded order {order_number}")
            except ExclusionError as e:
                st.error(f"❌ {e}")

    try:
        orders = run_async(exclusions.list_order_exclusions())
    except ExclusionError as e:
        st.error(f"❌ {e}")
        orders = []

    if not orders:
        st.info("No excluded orders.")
    for order in orders:
        cols = st.columns([2, 2, 2, 3, 1])
        cols[0].write(order.hd_order_number)
        cols[1].write(order.dealer_po_number or "-")
        cols[2].write(order.order_type or "-")
        cols[3].write(order.reason or "-")
        if cols[4].button("Remove", key=f"remove_order_{order.id}"):
            try:
                run_async(exclusions.remove_order_exclusion(order.id))
                st.rerun()
            except ExclusionError as e:
                st.error(f"❌ {e}")
