"""
Process-local implementation of every store interface.

Used when FULFILLMENT_STORAGE_BACKEND=memory (demos, local runs without a
Supabase project) and by the test suite.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from constants.schemas import (
    ExcludedOrder,
    ExclusionRecord,
    HDOrderSummary,
    NO_SKU,
    Order,
    OrderLineItem,
    ProgressRecord,
    StockRecord,
)
from utils.stores import (
    ExclusionLedger,
    HDOrderLineStore,
    OrderSource,
    PinnacleStockStore,
    ProgressLedgerStore,
    StockLookup,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryStore(
    OrderSource,
    StockLookup,
    ProgressLedgerStore,
    ExclusionLedger,
    HDOrderLineStore,
    PinnacleStockStore,
):
    def __init__(self):
        self.orders: List[Order] = []
        self.line_items: List[OrderLineItem] = []
        self.stock: Dict[str, StockRecord] = {}
        self.progress: List[ProgressRecord] = []
        self.exclusions: List[ExclusionRecord] = []
        self.excluded_orders: List[ExcludedOrder] = []
        self.hd_orders: Dict[str, Dict[str, Any]] = {}
        self.hd_line_items: List[Dict[str, Any]] = []
        self.upload_history: List[Dict[str, Any]] = []
        self.stock_upload_history: List[Dict[str, Any]] = []

    # --- Seeding helpers ---

    def add_order(self, order: Order, line_items: Optional[List[OrderLineItem]] = None):
        self.orders.append(order)
        self.line_items.extend(line_items or [])

    def add_stock(self, *records: StockRecord):
        for record in records:
            self.stock[record.part_number] = record

    def add_hd_order(self, hd_order_number: str, **fields) -> str:
        order_id = fields.pop("id", None) or _new_id()
        self.hd_orders[hd_order_number] = {
            "id": order_id,
            "hd_order_number": hd_order_number,
            "has_line_items": False,
            **fields,
        }
        return order_id

    # --- OrderSource ---

    async def list_orders(self, status_filter: Optional[str] = "unfulfilled") -> List[Order]:
        if not status_filter:
            return list(self.orders)
        return [order for order in self.orders if order.status == status_filter]

    async def list_line_items(self, order_ids: Iterable[str]) -> List[OrderLineItem]:
        wanted = set(order_ids)
        return [item for item in self.line_items if item.order_id in wanted]

    # --- StockLookup ---

    async def get_stock(self, part_numbers: Iterable[str]) -> List[StockRecord]:
        return [self.stock[part] for part in dict.fromkeys(part_numbers) if part in self.stock]

    # --- ProgressLedgerStore ---

    async def delete_by_key(self, order_external_id: str, sku: str) -> None:
        sku = sku or NO_SKU
        self.progress = [
            record
            for record in self.progress
            if not (record.order_external_id == order_external_id and record.sku == sku)
        ]

    async def delete_by_order(self, order_external_id: str) -> None:
        self.progress = [
            record for record in self.progress if record.order_external_id != order_external_id
        ]

    async def insert(self, record: ProgressRecord) -> ProgressRecord:
        stored = record.model_copy(
            update={"id": record.id or _new_id(), "created_at": datetime.now(timezone.utc)}
        )
        self.progress.append(stored)
        return stored

    async def list_by_order_ids(self, order_external_ids: Iterable[str]) -> List[ProgressRecord]:
        wanted = set(order_external_ids)
        return [record for record in self.progress if record.order_external_id in wanted]

    async def list_by_sku(self, sku: str) -> List[ProgressRecord]:
        return [record for record in self.progress if record.sku == sku]

    # --- ExclusionLedger ---

    async def list_by_order_number(self, hd_order_number: str) -> List[ExclusionRecord]:
        return [e for e in self.exclusions if e.hd_order_number == hd_order_number]

    async def list_exclusions(self) -> List[ExclusionRecord]:
        return list(reversed(self.exclusions))

    async def insert_exclusion(self, record: ExclusionRecord) -> ExclusionRecord:
        stored = record.model_copy(
            update={
                "id": record.id or _new_id(),
                "hd_orderlinecombo": record.part_combo,
                "created_at": datetime.now(timezone.utc),
            }
        )
        self.exclusions.append(stored)
        return stored

    async def delete_exclusion(self, exclusion_id: str) -> None:
        self.exclusions = [e for e in self.exclusions if e.id != exclusion_id]

    async def list_excluded_orders(self) -> List[ExcludedOrder]:
        excluded = []
        for order in self.excluded_orders:
            detail = self.hd_orders.get(order.hd_order_number, {})
            excluded.append(
                order.model_copy(
                    update={
                        "dealer_po_number": detail.get("dealer_po_number"),
                        "order_type": detail.get("order_type"),
                    }
                )
            )
        return excluded

    async def insert_excluded_order(self, order: ExcludedOrder) -> ExcludedOrder:
        stored = order.model_copy(update={"id": order.id or _new_id()})
        self.excluded_orders.append(stored)
        return stored

    async def delete_excluded_order(self, exclusion_id: str) -> None:
        self.excluded_orders = [o for o in self.excluded_orders if o.id != exclusion_id]

    # --- HDOrderLineStore ---

    async def find_order_id(self, hd_order_number: str) -> Optional[str]:
        order = self.hd_orders.get(hd_order_number)
        return order["id"] if order else None

    async def list_line_numbers(self, hd_order_number: str) -> List[str]:
        return [
            str(row["line_number"])
            for row in self.hd_line_items
            if row["hd_order_number"] == hd_order_number
        ]

    async def delete_line_items(self, hd_order_number: str) -> None:
        self.hd_line_items = [
            row for row in self.hd_line_items if row["hd_order_number"] != hd_order_number
        ]

    async def insert_line_item(self, row: Dict[str, Any]) -> None:
        self.hd_line_items.append(dict(row, id=_new_id()))

    async def mark_has_line_items(self, hd_order_id: str) -> None:
        for order in self.hd_orders.values():
            if order["id"] == hd_order_id:
                order["has_line_items"] = True

    async def record_upload(self, history: Dict[str, Any]) -> None:
        self.upload_history.append(dict(history))

    async def list_hd_orders(self) -> List[HDOrderSummary]:
        orders = [HDOrderSummary.model_validate(order) for order in self.hd_orders.values()]
        dated = sorted((o for o in orders if o.order_date), key=lambda o: o.order_date, reverse=True)
        return dated + [o for o in orders if not o.order_date]

    async def list_order_numbers_with_line_items(self) -> Set[str]:
        return {row["hd_order_number"] for row in self.hd_line_items if row.get("hd_order_number")}

    # --- PinnacleStockStore ---

    async def replace_stock(self, records: List[StockRecord]) -> int:
        self.stock = {record.part_number: record for record in records}
        return len(records)

    async def record_stock_upload(self, history: Dict[str, Any]) -> None:
        self.stock_upload_history.append(dict(history))
