import streamlit as st

from constants.errors import ReconciliationError
from constants.progress_status import BOARD_COLUMNS
from constants.schemas import ReconciliationMode
from utils.board import build_columns
from utils.services import get_services
from utils.ui_components import (
    render_header,
    render_item_card,
    render_move_controls,
    render_pending_confirmation,
    run_async,
)

st.set_page_config(layout="wide")

if "services" not in st.session_state:
    st.session_state.services = get_services()

render_header(
    "Drag & Drop Board",
    "Move line items between columns. To Dispatch moves the whole order.",
)

services = st.session_state.services

if render_pending_confirmation():
    st.rerun()

try:
    result = run_async(
        services.reconciliation.reconcile(
            services.settings.order_status_filter, ReconciliationMode.FULL
        )
    )
except ReconciliationError as e:
    st.error(f"❌ Could not load the board: {e}")
    st.stop()

column_titles = {column["id"]: column["title"] for column in BOARD_COLUMNS}
columns = build_columns(result.items)
board_cols = st.columns(len(columns))

for board_col, column in zip(board_cols, columns):
    with board_col:
        st.markdown(f"### {column.title} ({len(column.items)})")
        for item in column.items:
            with st.expander(f"{item.order_number} · {item.sku or 'No SKU'}"):
                render_item_card(item)
                target_id = st.selectbox(
                    "Move to",
                    [c for c in column_titles if c != column.id],
                    format_func=lambda c: column_titles[c],
                    key=f"move_{item.line_item_id}",
                )
                if render_move_controls(item, target_id, key_prefix="board"):
                    st.rerun()
