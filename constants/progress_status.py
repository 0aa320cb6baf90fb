"""
Progress status values for the Iron City order fulfillment workflow.

The ledger stores statuses as Title Case strings ("To Pick", "To Order", ...),
but older rows and UI call sites use lowercase, hyphenated or snake_case forms.
Everything is normalized to ``ProgressStatus`` where records enter or leave
storage, and compared as enum members everywhere else.
"""

import re
from enum import Enum
from typing import Dict, List, Optional


class ProgressStatus(str, Enum):
    TO_PICK = "To Pick"
    PICKING = "Picking"
    PICKED = "Picked"
    TO_ORDER = "To Order"
    ORDERED = "Ordered"
    TO_DISPATCH = "To Dispatch"
    FULFILLED = "Fulfilled"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def normalize(cls, value) -> "ProgressStatus":
        """
        Resolve any accepted spelling of a status to its enum member.

        Args:
            value: A ProgressStatus, or a string such as "to pick", "TO_PICK",
                "to-pick" or "ToPick"

        Returns:
            ProgressStatus: The canonical status

        Raises:
            ValueError: If the value is empty or not a known status
        """
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError("Progress status is required")

        key = _status_key(str(value))
        if not key:
            raise ValueError("Progress status is required")

        status = _STATUS_BY_KEY.get(key)
        if status is None:
            raise ValueError(f"Unknown progress status: {value!r}")
        return status

    @classmethod
    def parse_optional(cls, value) -> Optional["ProgressStatus"]:
        """Like normalize, but blank values map to None"""
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return cls.normalize(value)

    @property
    def column_id(self) -> str:
        return self.value.lower().replace(" ", "-")


def _status_key(value: str) -> str:
    # "To Pick", "to_pick", "to-pick" and "ToPick" all reduce to "topick"
    return re.sub(r"[\s_\-]+", "", value).lower()


_STATUS_BY_KEY: Dict[str, ProgressStatus] = {
    _status_key(status.value): status for status in ProgressStatus
}


# Kanban board columns, left to right. Picking and Fulfilled have no column.
BOARD_COLUMNS: List[Dict[str, str]] = [
    {"id": "to-pick", "title": "To Pick", "status": ProgressStatus.TO_PICK},
    {"id": "picked", "title": "Picked", "status": ProgressStatus.PICKED},
    {"id": "to-order", "title": "To Order", "status": ProgressStatus.TO_ORDER},
    {"id": "ordered", "title": "Ordered", "status": ProgressStatus.ORDERED},
    {"id": "to-dispatch", "title": "To Dispatch", "status": ProgressStatus.TO_DISPATCH},
]

COLUMN_STATUS: Dict[str, ProgressStatus] = {
    column["id"]: column["status"] for column in BOARD_COLUMNS
}

STATUS_DISPLAY = {
    ProgressStatus.TO_PICK: {"label": "To Pick", "icon": "📋", "color": "#3b82f6", "sort_order": 1},
    ProgressStatus.PICKING: {"label": "Picking", "icon": "🛒", "color": "#6366f1", "sort_order": 2},
    ProgressStatus.PICKED: {"label": "Picked", "icon": "✅", "color": "#22c55e", "sort_order": 3},
    ProgressStatus.TO_ORDER: {"label": "To Order", "icon": "📝", "color": "#f59e0b", "sort_order": 4},
    ProgressStatus.ORDERED: {"label": "Ordered", "icon": "📦", "color": "#a855f7", "sort_order": 5},
    ProgressStatus.TO_DISPATCH: {"label": "To Dispatch", "icon": "🚚", "color": "#ef4444", "sort_order": 6},
    ProgressStatus.FULFILLED: {"label": "Fulfilled", "icon": "🏁", "color": "#64748b", "sort_order": 7},
}


def get_status_label(status) -> str:
    """Get a display label with icon for a status, falling back to the raw value"""
    try:
        status = ProgressStatus.normalize(status)
    except ValueError:
        return str(status)
    display = STATUS_DISPLAY[status]
    return f"{display['icon']} {display['label']}"
