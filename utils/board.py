"""
Kanban board helpers: column grouping and drop handling.

Streamlit pages and the API use these to decide which dialog a move needs
before anything is sent to the TransitionEngine.
"""

import logging
from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel

from constants.progress_status import BOARD_COLUMNS, COLUMN_STATUS, ProgressStatus
from constants.schemas import FulfillmentItem

logger = logging.getLogger(__name__)

DropDialog = Literal["none", "confirm", "ordered", "dispatch"]


class BoardColumn(BaseModel):
    id: str
    title: str
    status: ProgressStatus
    items: List[FulfillmentItem] = []


class DropPlan(BaseModel):
    """What the UI has to ask before a move can be applied"""

    dialog: DropDialog
    target: Optional[ProgressStatus] = None
    # Notes dialog starts from the item's current notes so they can be kept
    default_notes: Optional[str] = None


def build_columns(items: Iterable[FulfillmentItem]) -> List[BoardColumn]:
    """Group items into board columns; Picking and Fulfilled items are left off"""
    columns = [
        BoardColumn(id=column["id"], title=column["title"], status=column["status"])
        for column in BOARD_COLUMNS
    ]
    by_status: Dict[ProgressStatus, BoardColumn] = {column.status: column for column in columns}

    for item in items:
        column = by_status.get(item.status)
        if column is not None:
            column.items.append(item)

    return columns


def plan_drop(item: FulfillmentItem, column_id: str) -> DropPlan:
    """
    Resolve a drag of an item onto a column.

    Args:
        item: The dragged item
        column_id: Target column id ("to-pick", "picked", ...), with or
            without the "column-" prefix

    Returns:
        DropPlan: "none" for the item's own column, "dispatch" and "ordered"
            for their dedicated dialogs, "confirm" for everything else
    """
    if column_id.startswith("column-"):
        column_id = column_id[len("column-"):]

    target = COLUMN_STATUS.get(column_id)
    if target is None:
        logger.warning(f"Drop on unknown column {column_id!r} ignored")
        return DropPlan(dialog="none")

    if item.status == target:
        return DropPlan(dialog="none", target=target)
    if target == ProgressStatus.TO_DISPATCH:
        return DropPlan(dialog="dispatch", target=target)
    if target == ProgressStatus.ORDERED:
        return DropPlan(dialog="ordered", target=target)
    return DropPlan(dialog="confirm", target=target, default_notes=item.notes)
