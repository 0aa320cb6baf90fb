import asyncio
import logging
from typing import Dict, List, Optional

import pandas as pd
import plotly.express as px
import streamlit as st

from constants.errors import (
    ConfirmationRequired,
    FulfillmentError,
    StorageError,
    TransitionValidationError,
)
from constants.progress_status import STATUS_DISPLAY, ProgressStatus, get_status_label
from constants.schemas import FulfillmentItem, StatusCounts, TransitionExtra
from utils.board import plan_drop
from utils.transition_engine import stock_shortfall

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_transition"


def run_async(coro):
    """Run an engine coroutine from Streamlit's synchronous script"""
    return asyncio.run(coro)


def render_header(title: str, caption: Optional[str] = None):
    """Render a page header"""
    st.title(title)
    if caption:
        st.caption(caption)


def render_status_metrics(counts: StatusCounts):
    """Render one metric per progress status"""
    metric_cols = st.columns(len(STATUS_DISPLAY) + 1)
    values = counts.model_dump()
    for col, (status, display) in zip(metric_cols, STATUS_DISPLAY.items()):
        field = status.value.lower().replace(" ", "_")
        with col:
            st.metric(f"{display['icon']} {display['label']}", values.get(field, 0))
    with metric_cols[-1]:
        st.metric("❓ Other", counts.other)


def render_status_chart(counts: StatusCounts):
    """Bar chart of items per progress status"""
    values = counts.model_dump()
    rows = []
    for status, display in STATUS_DISPLAY.items():
        field = status.value.lower().replace(" ", "_")
        rows.append({"Status": display["label"], "Items": values.get(field, 0), "color": display["color"]})
    if counts.other:
        rows.append({"Status": "Other", "Items": counts.other, "color": "#94a3b8"})

    df = pd.DataFrame(rows)
    fig = px.bar(
        df,
        x="Status",
        y="Items",
        color="Status",
        color_discrete_sequence=df["color"].tolist(),
        title="Line items by progress",
    )
    fig.update_layout(showlegend=False, height=360)
    st.plotly_chart(fig, use_container_width=True)


def items_to_dataframe(items: List[FulfillmentItem]) -> pd.DataFrame:
    """Flatten reconciled items for st.dataframe"""
    if not items:
        return pd.DataFrame()
    return pd.DataFrame(
        [
            {
                "Order": item.order_number,
                "Customer": item.customer_name or "",
                "SKU": item.sku or "No SKU",
                "Title": item.title,
                "Qty": item.quantity,
                "Picked": item.quantity_picked,
                "Status": get_status_label(item.status),
                "Partial": "Yes" if item.is_partial else "",
                "Dealer PO": item.dealer_po_number or "",
                "Stock": item.stock_quantity if item.stock_quantity is not None else "",
                "Bin": item.bin_location or "",
                "Notes": item.notes or "",
            }
            for item in items
        ]
    )


def render_item_card(item: FulfillmentItem):
    """Compact card for a board item"""
    stock = "no stock record" if item.stock_quantity is None else f"{item.stock_quantity} in stock"
    lines = [
        f"**{item.order_number}** · {item.sku or 'No SKU'} × {item.quantity}",
        f"{item.title}",
        f"📍 {item.bin_location or '-'} · {stock}",
    ]
    if item.is_partial:
        lines.append(f"✂️ Partial: {item.quantity_picked} picked")
    if item.dealer_po_number:
        lines.append(f"🧾 PO {item.dealer_po_number}")
    if item.notes:
        lines.append(f"📝 {item.notes}")
    st.markdown("  \n".join(lines))


def submit_transition(item: FulfillmentItem, target: ProgressStatus, extra: TransitionExtra) -> bool:
    """
    Send a transition to the engine and report the outcome.

    Soft warnings are parked in session state so the page can ask for
    confirmation and resubmit with the matching flag set.

    Returns:
        bool: True when the ledger was changed
    """
    services = st.session_state.services
    try:
        result = run_async(services.transitions.apply_transition(item, target, extra))
    except ConfirmationRequired as e:
        st.session_state[PENDING_KEY] = {
            "line_item_id": item.line_item_id,
            "item": item,
            "target": target,
            "extra": extra,
            "kind": e.kind,
            "message": e.message,
        }
        return False
    except TransitionValidationError as e:
        st.error(f"❌ {e}")
        return False
    except StorageError as e:
        logger.error(f"Transition to {target} failed: {e}")
        st.error(f"❌ Update to {target} failed: {e}")
        return False
    except FulfillmentError as e:
        st.error(f"❌ {e}")
        return False

    st.session_state.pop(PENDING_KEY, None)
    if result.applied:
        st.success(f"✅ {result.message}")
    return result.applied


def render_pending_confirmation() -> bool:
    """
    Show the parked soft warning, if any, with confirm and cancel buttons.

    Returns:
        bool: True when a confirmed transition was applied
    """
    pending: Optional[Dict] = st.session_state.get(PENDING_KEY)
    if not pending:
        return False

    st.warning(f"⚠️ {pending['message']}")
    confirm_col, cancel_col = st.columns(2)
    with confirm_col:
        if st.button("Confirm", key="confirm_pending", type="primary"):
            flag = (
                "confirm_cascade"
                if pending["kind"] == ConfirmationRequired.DISPATCH_CASCADE
                else "confirm_low_stock"
            )
            extra = pending["extra"].model_copy(update={flag: True})
            st.session_state.pop(PENDING_KEY, None)
            return submit_transition(pending["item"], pending["target"], extra)
    with cancel_col:
        if st.button("Cancel", key="cancel_pending"):
            st.session_state.pop(PENDING_KEY, None)
            st.rerun()
    return False


def render_move_controls(item: FulfillmentItem, column_id: str, key_prefix: str) -> bool:
    """
    Render the dialog a move onto ``column_id`` needs, and apply it on submit.

    Returns:
        bool: True when the ledger was changed
    """
    plan = plan_drop(item, column_id)
    if plan.dialog == "none":
        st.info("Item is already in this column.")
        return False

    with st.form(key=f"{key_prefix}_{item.line_item_id}_{column_id}"):
        if plan.dialog == "dispatch":
            st.markdown(
                f"🚚 Moving to **To Dispatch** moves **every item in order "
                f"{item.order_number}** and replaces their current progress."
            )
            notes = st.text_area("Notes (optional)", value="")
            submitted = st.form_submit_button("Dispatch order")
            extra = TransitionExtra(notes=notes or None)
        elif plan.dialog == "ordered":
            dealer_po = st.text_input("Dealer PO number")
            notes = st.text_area("Notes (optional)", value=item.notes or "")
            submitted = st.form_submit_button("Mark as ordered")
            extra = TransitionExtra(dealer_po_number=dealer_po, notes=notes or None)
        else:
            notes = st.text_area("Notes (optional)", value=plan.default_notes or "")
            submitted = st.form_submit_button(f"Move to {plan.target}")
            extra = TransitionExtra(notes=notes or None)

    if not submitted:
        return False
    return submit_transition(item, plan.target, extra)


def render_pick_actions(item: FulfillmentItem, key_prefix: str) -> bool:
    """
    Picklist action dialog: full pick, whole line to order, or partial pick.

    Returns:
        bool: True when the ledger was changed
    """
    with st.form(key=f"{key_prefix}_{item.line_item_id}"):
        action = st.radio(
            "Action",
            ["Picked", "To Order", "Partial pick"],
            horizontal=True,
            key=f"{key_prefix}_action_{item.line_item_id}",
        )
        partial = None
        if item.quantity > 1:
            partial = st.number_input(
                "Quantity picked (partial only)",
                min_value=1,
                max_value=item.quantity - 1,
                value=1,
                step=1,
            )
        matched_part = st.text_input("Matched Pinnacle part (optional)", value=item.matched_part_number or "")
        notes = st.text_area("Notes (optional)", value=item.notes or "")
        submitted = st.form_submit_button("Save")

    if not submitted:
        return False

    if action == "Picked" and stock_shortfall(item, item.quantity):
        st.caption(f"Stock shows {item.stock_quantity}; you will be asked to confirm.")

    extra = TransitionExtra(notes=notes or None, matched_part_number=matched_part or None)
    if action == "Picked":
        return submit_transition(item, ProgressStatus.PICKED, extra)
    if action == "To Order":
        return submit_transition(item, ProgressStatus.TO_ORDER, extra)

    if partial is None:
        st.error("❌ A single-quantity item cannot be partially picked")
        return False
    extra.partial_quantity = int(partial)
    return submit_transition(item, ProgressStatus.TO_ORDER, extra)
