#!/usr/bin/env python3
"""
Tests for order progress reconciliation.

Uses the in-memory store seeded with small orders so every case can be
checked by hand.
"""

import os
import sys
import unittest

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from constants.errors import ReconciliationError
from constants.progress_status import ProgressStatus
from constants.schemas import (
    NO_SKU,
    Order,
    OrderLineItem,
    ProgressRecord,
    ReconciliationMode,
    StockRecord,
)
from utils.memory_store import InMemoryStore
from utils.reconciliation import (
    ReconciliationEngine,
    build_progress_map,
    count_statuses,
    filter_location,
    group_by_order,
    merge_fulfillment_items,
)


def make_store():
    store = InMemoryStore()
    store.add_order(
        Order(id="1", external_id="9001", order_number="#1001", customer_name="Dana Rider"),
        [
            OrderLineItem(id="11", order_id="1", sku="A1", title="Mirror", quantity=4),
            OrderLineItem(id="12", order_id="1", sku="B2", title="Saddlebag", quantity=1),
        ],
    )
    store.add_order(
        Order(id="2", external_id="9002", order_number="#1002"),
        [
            OrderLineItem(id="21", order_id="2", sku="C3", title="Oil Filter", quantity=2),
            OrderLineItem(id="22", order_id="2", sku=None, title="Gift Wrap", quantity=1),
        ],
    )
    store.add_stock(
        StockRecord(part_number="A1", stock_quantity=3, bin_location="A-01", cost=52.0),
        StockRecord(part_number="C3", stock_quantity=12, bin_location="C-14", cost=6.2),
    )
    return store


class FailingOrderSource(InMemoryStore):
    async def list_line_items(self, order_ids):
        raise ConnectionError("connection reset")


class TestReconciliationEngine(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = make_store()
        self.engine = ReconciliationEngine(self.store, self.store, self.store)

    async def test_full_mode_one_item_per_line(self):
        result = await self.engine.reconcile(mode=ReconciliationMode.FULL)

        self.assertEqual(len(result.items), 4)
        self.assertEqual(
            sorted(item.line_item_id for item in result.items), ["11", "12", "21", "22"]
        )
        self.assertEqual(result.stats.order_count, 2)
        self.assertEqual(result.stats.line_item_count, 4)
        self.assertEqual(result.stats.final_order_count, 2)

    async def test_missing_progress_defaults_to_to_pick(self):
        result = await self.engine.reconcile()
        item = next(i for i in result.items if i.sku == "A1")

        self.assertEqual(item.status, ProgressStatus.TO_PICK)
        self.assertIsNone(item.notes)
        self.assertEqual(item.quantity_required, 4)
        self.assertEqual(item.quantity_picked, 0)
        self.assertFalse(item.is_partial)
        self.assertFalse(item.has_progress_record)

    async def test_stock_fields_merged_by_sku(self):
        result = await self.engine.reconcile()
        by_sku = {item.sku: item for item in result.items}

        self.assertTrue(by_sku["A1"].in_stock)
        self.assertEqual(by_sku["A1"].stock_quantity, 3)
        self.assertEqual(by_sku["A1"].bin_location, "A-01")

        # No stock record and no SKU both give empty stock fields
        for sku in ("B2", None):
            self.assertFalse(by_sku[sku].in_stock)
            self.assertIsNone(by_sku[sku].stock_quantity)
            self.assertIsNone(by_sku[sku].bin_location)
            self.assertIsNone(by_sku[sku].cost)

    async def test_progress_record_applied(self):
        await self.store.insert(
            ProgressRecord(
                order_external_id="9001",
                sku="A1",
                progress="to order",
                notes="rush",
                quantity_required=4,
                quantity_picked=2,
                is_partial=True,
            )
        )
        result = await self.engine.reconcile()
        item = next(i for i in result.items if i.sku == "A1")

        self.assertEqual(item.status, ProgressStatus.TO_ORDER)
        self.assertEqual(item.notes, "rush")
        self.assertEqual(item.quantity_picked, 2)
        self.assertTrue(item.is_partial)
        self.assertTrue(item.has_progress_record)

    async def test_missing_sku_uses_no_sku_key(self):
        await self.store.insert(
            ProgressRecord(order_external_id="9002", sku=None, progress="Picked")
        )
        result = await self.engine.reconcile()
        item = next(i for i in result.items if i.line_item_id == "22")

        self.assertEqual(item.key, f"9002_{NO_SKU}")
        self.assertEqual(item.status, ProgressStatus.PICKED)

    async def test_filtering_mode_drops_progressed_items(self):
        await self.store.insert(ProgressRecord(order_external_id="9001", sku="A1", progress="Picked"))
        await self.store.insert(ProgressRecord(order_external_id="9001", sku="B2", progress="Ordered"))

        result = await self.engine.reconcile(mode=ReconciliationMode.FILTERING)

        self.assertEqual(sorted(i.line_item_id for i in result.items), ["21", "22"])
        # Order #1001 has nothing left and disappears entirely
        self.assertEqual([order.order_number for order in result.orders], ["#1002"])

    async def test_filtering_mode_keeps_record_without_progress(self):
        await self.store.insert(ProgressRecord(order_external_id="9001", sku="A1", notes="hold"))

        result = await self.engine.reconcile(mode=ReconciliationMode.FILTERING)

        self.assertIn("11", [i.line_item_id for i in result.items])

    async def test_full_mode_keeps_progressed_items(self):
        await self.store.insert(ProgressRecord(order_external_id="9001", sku="A1", progress="Picked"))

        result = await self.engine.reconcile(mode=ReconciliationMode.FULL)

        self.assertEqual(len(result.items), 4)
        self.assertEqual(result.counts.picked, 1)
        self.assertEqual(result.counts.to_pick, 3)

    async def test_location_filter(self):
        self.store.line_items.append(
            OrderLineItem(id="13", order_id="1", sku="Z9", quantity=1, location_id="999")
        )
        self.store.line_items[0] = self.store.line_items[0].model_copy(update={"location_id": "123"})
        engine = ReconciliationEngine(self.store, self.store, self.store, location_id="123")

        result = await engine.reconcile()
        ids = [i.line_item_id for i in result.items]

        self.assertIn("11", ids)
        self.assertIn("12", ids)  # no location
        self.assertNotIn("13", ids)

    async def test_no_orders_returns_empty_result(self):
        engine = ReconciliationEngine(InMemoryStore(), self.store, self.store)
        result = await engine.reconcile()

        self.assertEqual(result.items, [])
        self.assertEqual(result.orders, [])
        self.assertEqual(result.counts.total, 0)

    async def test_read_failure_raises(self):
        failing = FailingOrderSource()
        failing.orders = list(self.store.orders)
        engine = ReconciliationEngine(failing, self.store, self.store)

        with self.assertRaises(ReconciliationError):
            await engine.reconcile()

    async def test_total_picked_for_sku(self):
        await self.store.insert(ProgressRecord(order_external_id="9001", sku="A1", quantity_picked=2))
        await self.store.insert(ProgressRecord(order_external_id="9003", sku="A1", quantity_picked=3))

        self.assertEqual(await self.engine.total_picked_for_sku("A1"), 5)
        self.assertEqual(await self.engine.total_picked_for_sku(""), 0)


class TestMergeHelpers(unittest.TestCase):

    def test_orphaned_line_item_skipped(self):
        orders = [Order(id="1", external_id="9001")]
        lines = [
            OrderLineItem(id="11", order_id="1", sku="A1"),
            OrderLineItem(id="99", order_id="404", sku="A1"),
        ]
        items = merge_fulfillment_items(orders, lines, {}, {})

        self.assertEqual([i.line_item_id for i in items], ["11"])

    def test_duplicate_progress_last_wins(self):
        records = [
            ProgressRecord(order_external_id="9001", sku="A1", progress="Picked"),
            ProgressRecord(order_external_id="9001", sku="A1", progress="Ordered"),
        ]
        progress_map = build_progress_map(records)

        self.assertEqual(progress_map["9001_A1"].progress, ProgressStatus.ORDERED)

    def test_duplicate_sku_lines_share_record(self):
        orders = [Order(id="1", external_id="9001")]
        lines = [
            OrderLineItem(id="11", order_id="1", sku="A1", quantity=1, price=10),
            OrderLineItem(id="12", order_id="1", sku="A1", quantity=2, price=12),
        ]
        progress_map = build_progress_map(
            [ProgressRecord(order_external_id="9001", sku="A1", progress="Picked")]
        )
        items = merge_fulfillment_items(orders, lines, {}, progress_map)

        self.assertEqual(len(items), 2)
        self.assertTrue(all(i.status == ProgressStatus.PICKED for i in items))

    def test_group_by_order_drops_empty_orders(self):
        orders = [Order(id="1", external_id="9001"), Order(id="2", external_id="9002")]
        items = merge_fulfillment_items(
            orders, [OrderLineItem(id="21", order_id="2", sku="C3")], {}, {}
        )
        grouped = group_by_order(orders, items)

        self.assertEqual([o.id for o in grouped], ["2"])
        self.assertEqual(len(grouped[0].items), 1)

    def test_unrecognized_progress_counted_as_other(self):
        orders = [Order(id="1", external_id="9001")]
        lines = [OrderLineItem(id="11", order_id="1", sku="A1")]
        progress_map = build_progress_map(
            [ProgressRecord.from_row({"shopify_order_id": "9001", "sku": "A1", "progress": "Lost"})]
        )
        items = merge_fulfillment_items(orders, lines, {}, progress_map)
        counts = count_statuses(items)

        self.assertEqual(counts.other, 1)
        self.assertEqual(counts.to_pick, 0)
        self.assertEqual(items[0].unrecognized_progress, "Lost")

    def test_filter_location_without_location_keeps_all(self):
        lines = [OrderLineItem(id="11", order_id="1", location_id="5")]
        self.assertEqual(len(filter_location(lines, None)), 1)


if __name__ == '__main__':
    unittest.main(verbosity=2)
