#!/usr/bin/env python3
"""
Tests for progress transitions, run against the in-memory ledger.
"""

import os
import sys
import unittest

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from constants.errors import ConfirmationRequired, StorageError, TransitionValidationError
from constants.progress_status import ProgressStatus
from constants.schemas import (
    Order,
    OrderLineItem,
    ProgressRecord,
    ReconciliationMode,
    StockRecord,
    TransitionExtra,
)
from utils.memory_store import InMemoryStore
from utils.reconciliation import ReconciliationEngine
from utils.transition_engine import TransitionEngine, stock_shortfall


class CountingStore(InMemoryStore):
    """Records every ledger write"""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def delete_by_key(self, order_external_id, sku):
        self.writes.append(("delete_by_key", order_external_id, sku))
        await super().delete_by_key(order_external_id, sku)

    async def delete_by_order(self, order_external_id):
        self.writes.append(("delete_by_order", order_external_id))
        await super().delete_by_order(order_external_id)

    async def insert(self, record):
        self.writes.append(("insert", record.key))
        return await super().insert(record)


class FailingInsertStore(CountingStore):
    """Fails every insert after the first ``succeed`` inserts"""

    def __init__(self, succeed=0):
        super().__init__()
        self.succeed = succeed

    async def insert(self, record):
        if self.succeed <= 0:
            raise ConnectionError("ledger unavailable")
        self.succeed -= 1
        return await super().insert(record)


class RejectingStore(CountingStore):
    """Rejects inserts of one progress status and accepts everything else"""

    def __init__(self, rejected_status):
        super().__init__()
        self.rejected_status = rejected_status

    async def insert(self, record):
        if record.progress == self.rejected_status:
            raise ConnectionError("insert rejected")
        return await super().insert(record)


def seed(store):
    store.add_order(
        Order(id="1", external_id="9001", order_number="#1001"),
        [
            OrderLineItem(id="11", order_id="1", sku="A1", title="Mirror", quantity=4),
            OrderLineItem(id="12", order_id="1", sku="B2", title="Saddlebag", quantity=1),
            OrderLineItem(id="13", order_id="1", sku="C3", title="Oil Filter", quantity=5),
        ],
    )
    store.add_stock(
        StockRecord(part_number="A1", stock_quantity=3),
        StockRecord(part_number="C3", stock_quantity=10),
    )
    return store


class TestTransitionEngine(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = seed(CountingStore())
        self.reconciler = ReconciliationEngine(self.store, self.store, self.store)
        self.engine = TransitionEngine(self.store, self.store)

    async def items(self):
        result = await self.reconciler.reconcile(mode=ReconciliationMode.FULL)
        return {item.sku: item for item in result.items}

    def records_for(self, sku):
        return [r for r in self.store.progress if r.sku == sku]

    async def test_noop_when_status_matches_any_case(self):
        item = (await self.items())["C3"]

        for target in ("To Pick", "to pick", "TO_PICK", "to-pick"):
            result = await self.engine.apply_transition(item, target)
            self.assertFalse(result.applied)
            self.assertEqual(result.outcome, "noop")

        self.assertEqual(self.store.writes, [])

    async def test_missing_target_rejected(self):
        item = (await self.items())["C3"]
        for target in (None, "", "   "):
            with self.assertRaises(TransitionValidationError):
                await self.engine.apply_transition(item, target)
        with self.assertRaises(TransitionValidationError):
            await self.engine.apply_transition(item, "Shipped")
        self.assertEqual(self.store.writes, [])

    async def test_picked_sets_quantity_picked(self):
        item = (await self.items())["C3"]
        result = await self.engine.apply_transition(item, ProgressStatus.PICKED)

        self.assertTrue(result.applied)
        [record] = self.records_for("C3")
        self.assertEqual(record.progress, ProgressStatus.PICKED)
        self.assertEqual(record.quantity_picked, 5)
        self.assertEqual(record.quantity_required, 5)
        self.assertFalse(record.is_partial)
        self.assertEqual(record.order_sku_combo, "#1001C3")

    async def test_picked_low_stock_needs_confirmation(self):
        item = (await self.items())["A1"]

        with self.assertRaises(ConfirmationRequired) as ctx:
            await self.engine.apply_transition(item, "Picked")
        self.assertEqual(ctx.exception.kind, ConfirmationRequired.LOW_STOCK)
        self.assertEqual(self.store.writes, [])

        result = await self.engine.apply_transition(
            item, "Picked", TransitionExtra(confirm_low_stock=True)
        )
        self.assertTrue(result.applied)
        self.assertEqual(self.records_for("A1")[0].quantity_picked, 4)

    async def test_no_stock_record_means_no_warning(self):
        item = (await self.items())["B2"]
        self.assertFalse(stock_shortfall(item, 10))

        result = await self.engine.apply_transition(item, "Picked")
        self.assertTrue(result.applied)

    async def test_whole_line_to_order(self):
        item = (await self.items())["A1"]
        await self.engine.apply_transition(item, "To Order", TransitionExtra(notes="from HD"))

        [record] = self.records_for("A1")
        self.assertEqual(record.progress, ProgressStatus.TO_ORDER)
        self.assertEqual(record.quantity_picked, 0)
        self.assertFalse(record.is_partial)
        self.assertEqual(record.notes, "from HD")

    async def test_partial_quantity_bounds(self):
        item = (await self.items())["C3"]  # quantity 5

        for partial in (0, 5, -1, 6):
            with self.assertRaises(TransitionValidationError):
                await self.engine.apply_transition(
                    item, "To Order", TransitionExtra(partial_quantity=partial)
                )
        self.assertEqual(self.store.writes, [])

        await self.engine.apply_transition(item, "To Order", TransitionExtra(partial_quantity=3))
        [record] = self.records_for("C3")
        self.assertEqual(record.quantity_picked, 3)
        self.assertTrue(record.is_partial)
        self.assertEqual(record.quantity_required, 5)

    async def test_partial_pick_of_single_item_rejected(self):
        item = (await self.items())["B2"]
        with self.assertRaises(TransitionValidationError):
            await self.engine.apply_transition(item, "To Order", TransitionExtra(partial_quantity=1))

    async def test_partial_low_stock_compares_partial_quantity(self):
        item = (await self.items())["A1"]  # 3 in stock, quantity 4

        # 3 picked out of 3 in stock is fine
        await self.engine.apply_transition(item, "To Order", TransitionExtra(partial_quantity=3))
        self.assertEqual(self.records_for("A1")[0].quantity_picked, 3)

    async def test_partial_pick_above_stock_needs_confirmation(self):
        self.store.add_stock(StockRecord(part_number="C3", stock_quantity=2))
        item = (await self.items())["C3"]  # 2 in stock, quantity 5

        with self.assertRaises(ConfirmationRequired) as ctx:
            await self.engine.apply_transition(
                item, "To Order", TransitionExtra(partial_quantity=3)
            )
        self.assertEqual(ctx.exception.kind, ConfirmationRequired.LOW_STOCK)
        self.assertEqual(self.store.writes, [])
        self.assertEqual(self.records_for("C3"), [])

        result = await self.engine.apply_transition(
            item, "To Order", TransitionExtra(partial_quantity=3, confirm_low_stock=True)
        )
        self.assertTrue(result.applied)
        [record] = self.records_for("C3")
        self.assertEqual(record.quantity_picked, 3)
        self.assertTrue(record.is_partial)

    async def test_ordered_requires_po(self):
        item = (await self.items())["B2"]

        for po in (None, "", "   "):
            with self.assertRaises(TransitionValidationError):
                await self.engine.apply_transition(
                    item, "Ordered", TransitionExtra(dealer_po_number=po)
                )
        self.assertEqual(self.store.writes, [])

        await self.engine.apply_transition(item, "Ordered", TransitionExtra(dealer_po_number="PO123"))
        [record] = self.records_for("B2")
        self.assertEqual(record.progress, ProgressStatus.ORDERED)
        self.assertEqual(record.dealer_po_number, "PO123")

    async def test_replace_leaves_one_record_per_key(self):
        item = (await self.items())["C3"]
        await self.engine.apply_transition(item, "Picked", TransitionExtra(notes="first"))

        item = (await self.items())["C3"]
        await self.engine.apply_transition(item, "To Order")

        records = self.records_for("C3")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].progress, ProgressStatus.TO_ORDER)
        # Notes were not re-supplied, so they are gone
        self.assertIsNone(records[0].notes)

    async def test_delete_happens_before_insert(self):
        item = (await self.items())["C3"]
        await self.engine.apply_transition(item, "Picked")

        self.assertEqual(
            self.store.writes,
            [("delete_by_key", "9001", "C3"), ("insert", "9001_C3")],
        )

    async def test_dispatch_requires_confirmation(self):
        item = (await self.items())["A1"]

        with self.assertRaises(ConfirmationRequired) as ctx:
            await self.engine.apply_transition(item, "To Dispatch")
        self.assertEqual(ctx.exception.kind, ConfirmationRequired.DISPATCH_CASCADE)
        self.assertEqual(self.store.writes, [])

    async def test_dispatch_cascades_to_whole_order(self):
        items = await self.items()
        await self.engine.apply_transition(items["B2"], "Ordered", TransitionExtra(dealer_po_number="PO55"))
        await self.engine.apply_transition(items["C3"], "Picked")

        items = await self.items()
        result = await self.engine.apply_transition(
            items["A1"], "To Dispatch", TransitionExtra(confirm_cascade=True)
        )

        self.assertTrue(result.applied)
        self.assertEqual(len(result.records), 3)

        items = await self.items()
        for sku in ("A1", "B2", "C3"):
            self.assertEqual(items[sku].status, ProgressStatus.TO_DISPATCH)
            self.assertIsNone(items[sku].dealer_po_number)
            self.assertEqual(len(self.records_for(sku)), 1)

    async def test_dispatch_failure_reports_partial_progress(self):
        store = seed(FailingInsertStore(succeed=1))
        reconciler = ReconciliationEngine(store, store, store)
        engine = TransitionEngine(store, store)
        item = next(
            i for i in (await reconciler.reconcile()).items if i.sku == "A1"
        )

        with self.assertRaises(StorageError) as ctx:
            await engine.apply_transition(item, "To Dispatch", TransitionExtra(confirm_cascade=True))

        self.assertEqual(ctx.exception.written, 1)
        self.assertEqual(ctx.exception.total, 3)
        # No rollback: the first record stays
        self.assertEqual(len(store.progress), 1)

    async def test_single_item_storage_failure(self):
        store = seed(FailingInsertStore(succeed=0))
        reconciler = ReconciliationEngine(store, store, store)
        engine = TransitionEngine(store, store)
        item = next(i for i in (await reconciler.reconcile()).items if i.sku == "C3")

        with self.assertRaises(StorageError):
            await engine.apply_transition(item, "Picked")
        self.assertEqual(store.progress, [])

    async def test_failed_write_keeps_previous_record(self):
        store = seed(RejectingStore(ProgressStatus.PICKED))
        store.progress.append(
            ProgressRecord(
                order_external_id="9001",
                order_number="#1001",
                sku="C3",
                progress="Ordered",
                dealer_po_number="PO55",
                notes="keep",
                quantity_required=5,
            )
        )
        reconciler = ReconciliationEngine(store, store, store)
        engine = TransitionEngine(store, store)
        item = next(i for i in (await reconciler.reconcile()).items if i.sku == "C3")

        with self.assertRaises(StorageError):
            await engine.apply_transition(item, "Picked")

        after = next(i for i in (await reconciler.reconcile()).items if i.sku == "C3")
        self.assertEqual(after.status, ProgressStatus.ORDERED)
        self.assertEqual(after.dealer_po_number, "PO55")
        self.assertEqual(after.notes, "keep")
        self.assertEqual(len(store.progress), 1)

    async def test_failed_restore_reported(self):
        store = seed(FailingInsertStore(succeed=0))
        store.progress.append(
            ProgressRecord(order_external_id="9001", sku="C3", progress="Ordered", dealer_po_number="PO55")
        )
        reconciler = ReconciliationEngine(store, store, store)
        engine = TransitionEngine(store, store)
        item = next(i for i in (await reconciler.reconcile()).items if i.sku == "C3")

        with self.assertRaises(StorageError) as ctx:
            await engine.apply_transition(item, "Picked")
        self.assertIn("could not be restored", str(ctx.exception))

    async def test_reset_progress(self):
        item = (await self.items())["C3"]
        await self.engine.apply_transition(item, "Picked")
        await self.engine.reset_progress((await self.items())["C3"])

        self.assertEqual(self.records_for("C3"), [])
        self.assertEqual((await self.items())["C3"].status, ProgressStatus.TO_PICK)

    async def test_end_to_end_scenario(self):
        store = InMemoryStore()
        store.add_order(
            Order(id="1", external_id="1001", order_number="#1001"),
            [
                OrderLineItem(id="11", order_id="1", sku="A1", quantity=4),
                OrderLineItem(id="12", order_id="1", sku="B2", quantity=1),
            ],
        )
        store.add_stock(StockRecord(part_number="A1", stock_quantity=10))
        reconciler = ReconciliationEngine(store, store, store)
        engine = TransitionEngine(store, store)

        async def current():
            result = await reconciler.reconcile()
            return {item.sku: item for item in result.items}

        items = await current()
        self.assertEqual(items["A1"].status, ProgressStatus.TO_PICK)
        self.assertEqual(items["B2"].status, ProgressStatus.TO_PICK)

        await engine.apply_transition(items["A1"], "To Order", TransitionExtra(partial_quantity=2))
        await engine.apply_transition(items["B2"], "Ordered", TransitionExtra(dealer_po_number="PO55"))

        items = await current()
        self.assertEqual(items["A1"].status, ProgressStatus.TO_ORDER)
        self.assertEqual(items["A1"].quantity_picked, 2)
        self.assertTrue(items["A1"].is_partial)
        self.assertEqual(items["B2"].status, ProgressStatus.ORDERED)
        self.assertEqual(items["B2"].dealer_po_number, "PO55")

        await engine.apply_transition(
            items["A1"], "To Dispatch", TransitionExtra(confirm_cascade=True)
        )

        items = await current()
        for sku in ("A1", "B2"):
            self.assertEqual(items[sku].status, ProgressStatus.TO_DISPATCH)
        self.assertFalse(items["A1"].is_partial)
        self.assertIsNone(items["B2"].dealer_po_number)
        self.assertEqual(len(store.progress), 2)


class TestProgressRecordRows(unittest.TestCase):

    def test_row_round_trip_normalizes_status(self):
        record = ProgressRecord.from_row(
            {"shopify_order_id": 9001, "sku": "A1", "progress": "to dispatch", "status": "Backorder"}
        )

        self.assertEqual(record.order_external_id, "9001")
        self.assertEqual(record.progress, ProgressStatus.TO_DISPATCH)
        self.assertEqual(record.hd_status, "Backorder")

        row = record.to_row()
        self.assertEqual(row["progress"], "To Dispatch")
        self.assertEqual(row["status"], "Backorder")
        self.assertEqual(row["shopify_order_id"], "9001")
        self.assertNotIn("raw_progress", row)
        self.assertNotIn("id", row)


if __name__ == '__main__':
    unittest.main(verbosity=2)
