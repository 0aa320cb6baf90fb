"""
Order progress reconciliation.

Joins Shopify orders and line items with Pinnacle stock and the order progress
ledger to produce one FulfillmentItem per line item. Two modes exist because
the legacy picklist and the kanban board disagree on what to show:

- FILTERING drops every item that already has a progress value.
- FULL keeps every item and defaults missing progress to "To Pick".
"""

import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

from constants.errors import ReconciliationError
from constants.progress_status import ProgressStatus
from constants.schemas import (
    FulfillmentItem,
    Order,
    OrderLineItem,
    PicklistOrder,
    ProgressRecord,
    ReconciliationMode,
    ReconciliationResult,
    ReconciliationStats,
    StatusCounts,
    StockRecord,
    ledger_key,
)
from utils.stores import OrderSource, ProgressLedgerStore, StockLookup

logger = logging.getLogger(__name__)

STATUS_COUNT_FIELDS = {
    ProgressStatus.TO_PICK: "to_pick",
    ProgressStatus.PICKING: "picking",
    ProgressStatus.PICKED: "picked",
    ProgressStatus.TO_ORDER: "to_order",
    ProgressStatus.ORDERED: "ordered",
    ProgressStatus.TO_DISPATCH: "to_dispatch",
    ProgressStatus.FULFILLED: "fulfilled",
}


def build_stock_map(stock: Iterable[StockRecord]) -> Dict[str, StockRecord]:
    return {record.part_number: record for record in stock}


def build_progress_map(progress: Iterable[ProgressRecord]) -> Dict[str, ProgressRecord]:
    """Index ledger records by ``{orderExternalId}_{sku}``; a later duplicate replaces an earlier one"""
    progress_map: Dict[str, ProgressRecord] = {}
    for record in progress:
        if record.key in progress_map:
            logger.warning(f"⚠️ Duplicate progress records for {record.key}, keeping the last one")
        progress_map[record.key] = record
    return progress_map


def extract_unique_skus(line_items: Iterable[OrderLineItem]) -> List[str]:
    return list(dict.fromkeys(item.sku for item in line_items if item.sku))


def filter_location(
    line_items: Iterable[OrderLineItem], location_id: Optional[str]
) -> List[OrderLineItem]:
    """Keep line items at the given location, or with no location at all"""
    if not location_id:
        return list(line_items)
    return [item for item in line_items if not item.location_id or item.location_id == location_id]


def merge_fulfillment_items(
    orders: Iterable[Order],
    line_items: Iterable[OrderLineItem],
    stock_map: Dict[str, StockRecord],
    progress_map: Dict[str, ProgressRecord],
) -> List[FulfillmentItem]:
    """
    Merge every line item with its order, stock row and ledger record.

    Args:
        orders: Orders the line items belong to
        line_items: Line items to merge, in output order
        stock_map: Stock rows keyed by part number
        progress_map: Ledger records keyed by ledger key

    Returns:
        List[FulfillmentItem]: One item per line item with an owning order
    """
    orders_by_id = {order.id: order for order in orders}
    items: List[FulfillmentItem] = []
    seen_keys: Dict[str, str] = {}

    for line in line_items:
        order = orders_by_id.get(line.order_id)
        if order is None:
            # Orphaned line item
            continue

        key = ledger_key(order.external_id, line.sku)
        if key in seen_keys and seen_keys[key] != line.id:
            logger.warning(
                f"⚠️ Order {order.order_number} has SKU {line.sku} on more than one line; "
                f"both lines share ledger record {key}"
            )
        seen_keys[key] = line.id

        stock = stock_map.get(line.sku) if line.sku else None
        record = progress_map.get(key)

        item = FulfillmentItem(
            order_id=order.id,
            order_external_id=order.external_id,
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            order_created_at=order.created_at,
            line_item_id=line.id,
            shopify_line_item_id=line.shopify_line_item_id,
            sku=line.sku,
            title=line.title,
            quantity=line.quantity,
            price=line.price,
            location_id=line.location_id,
            location_name=line.location_name,
            in_stock=stock is not None,
            stock_quantity=stock.stock_quantity if stock else None,
            bin_location=stock.bin_location if stock else None,
            cost=stock.cost if stock else None,
            stock_description=stock.description if stock else None,
            quantity_required=line.quantity,
        )

        if record is not None:
            item.has_progress_record = True
            item.status = record.progress or ProgressStatus.TO_PICK
            item.unrecognized_progress = record.raw_progress
            item.notes = record.notes
            if record.quantity_required is not None:
                item.quantity_required = record.quantity_required
            item.quantity_picked = record.quantity_picked or 0
            item.is_partial = bool(record.is_partial)
            item.dealer_po_number = record.dealer_po_number
            item.matched_part_number = record.matched_part_number
            item.hd_orderlinecombo = record.hd_orderlinecombo
            item.hd_status = record.hd_status

        items.append(item)

    return items


def filter_unprogressed(
    items: Iterable[FulfillmentItem], progress_map: Dict[str, ProgressRecord]
) -> List[FulfillmentItem]:
    """Drop items whose ledger record carries any progress value"""
    kept = []
    for item in items:
        record = progress_map.get(item.key)
        if record is not None and record.has_progress:
            continue
        kept.append(item)
    return kept


def group_by_order(orders: Iterable[Order], items: Iterable[FulfillmentItem]) -> List[PicklistOrder]:
    """Group items under their orders, dropping orders with no items"""
    items_by_order: Dict[str, List[FulfillmentItem]] = {}
    for item in items:
        items_by_order.setdefault(item.order_id, []).append(item)

    grouped = []
    for order in orders:
        order_items = items_by_order.get(order.id)
        if not order_items:
            continue
        grouped.append(
            PicklistOrder(
                id=order.id,
                external_id=order.external_id,
                order_number=order.order_number,
                customer_name=order.customer_name,
                customer_email=order.customer_email,
                created_at=order.created_at,
                status=order.status,
                items=order_items,
            )
        )
    return grouped


def count_statuses(items: Iterable[FulfillmentItem]) -> StatusCounts:
    counts = StatusCounts()
    for item in items:
        if item.unrecognized_progress:
            counts.other += 1
            continue
        field = STATUS_COUNT_FIELDS[item.status]
        setattr(counts, field, getattr(counts, field) + 1)
    return counts


class ReconciliationEngine:
    """Builds the current fulfillment view from the order source, stock and ledger"""

    def __init__(
        self,
        order_source: OrderSource,
        stock_lookup: StockLookup,
        ledger: ProgressLedgerStore,
        location_id: Optional[str] = None,
    ):
        self.order_source = order_source
        self.stock_lookup = stock_lookup
        self.ledger = ledger
        self.location_id = location_id

    async def _load(
        self, status_filter: Optional[str]
    ) -> Tuple[List[Order], List[OrderLineItem], List[StockRecord], List[ProgressRecord]]:
        try:
            orders = await self.order_source.list_orders(status_filter)
            if not orders:
                return [], [], [], []

            line_items = await self.order_source.list_line_items([o.id for o in orders])
            line_items = filter_location(line_items, self.location_id)
            if not line_items:
                return orders, [], [], []

            skus = extract_unique_skus(line_items)
            stock = await self.stock_lookup.get_stock(skus) if skus else []
            progress = await self.ledger.list_by_order_ids([o.external_id for o in orders])
        except Exception as e:
            logger.error(f"❌ Reconciliation read failed: {e}")
            raise ReconciliationError(f"Failed to load fulfillment data: {e}") from e

        return orders, line_items, stock, progress

    async def reconcile(
        self,
        status_filter: Optional[str] = "unfulfilled",
        mode: ReconciliationMode = ReconciliationMode.FULL,
    ) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Args:
            status_filter: Order status to reconcile, None for every order
            mode: FULL keeps every item, FILTERING drops items with progress

        Returns:
            ReconciliationResult: Items, grouped orders, status counts and stats

        Raises:
            ReconciliationError: If any read fails
        """
        started = time.monotonic()
        mode = ReconciliationMode(mode)

        orders, line_items, stock, progress = await self._load(status_filter)

        progress_map = build_progress_map(progress)
        items = merge_fulfillment_items(orders, line_items, build_stock_map(stock), progress_map)
        if mode == ReconciliationMode.FILTERING:
            items = filter_unprogressed(items, progress_map)

        grouped = group_by_order(orders, items)

        stats = ReconciliationStats(
            order_count=len(orders),
            line_item_count=len(line_items),
            progress_item_count=len(progress),
            final_order_count=len(grouped),
            final_item_count=len(items),
            time_taken=round(time.monotonic() - started, 3),
        )
        logger.info(
            f"✅ Reconciled {stats.final_item_count} items across {stats.final_order_count} orders "
            f"({mode.value} mode, {stats.order_count} orders, {stats.line_item_count} line items, "
            f"{stats.progress_item_count} progress records, {stats.time_taken}s)"
        )

        return ReconciliationResult(
            mode=mode,
            items=items,
            orders=grouped,
            counts=count_statuses(items),
            stats=stats,
        )

    async def total_picked_for_sku(self, sku: str) -> int:
        """Sum of quantity picked for a SKU across every ledger record"""
        if not sku:
            return 0
        records = await self.ledger.list_by_sku(sku)
        return sum(record.quantity_picked or 0 for record in records)
