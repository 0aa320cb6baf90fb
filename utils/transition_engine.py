"""
Progress transitions for reconciled fulfillment items.

Every transition replaces the ledger record for its key: the old record is
deleted and a new one inserted. Fields that the new record does not set are
lost, so notes survive only when the caller passes them again.

To Dispatch is the one transition scoped to the whole order: every line item
of the order gets a fresh To Dispatch record, overriding whatever state each
item had.
"""

import logging
from typing import List, Optional

from constants.errors import (
    ConfirmationRequired,
    FulfillmentError,
    StorageError,
    TransitionValidationError,
)
from constants.progress_status import ProgressStatus
from constants.schemas import (
    FulfillmentItem,
    OrderLineItem,
    ProgressRecord,
    TransitionExtra,
    TransitionResult,
    ledger_key,
)
from utils.stores import OrderSource, ProgressLedgerStore

logger = logging.getLogger(__name__)


def stock_shortfall(item: FulfillmentItem, quantity: int) -> bool:
    """True when the known stock quantity is below the requested quantity"""
    return item.stock_quantity is not None and item.stock_quantity < quantity


def resolve_target(target_status) -> ProgressStatus:
    if target_status is None or (isinstance(target_status, str) and not target_status.strip()):
        raise TransitionValidationError("Target status is required")
    try:
        return ProgressStatus.normalize(target_status)
    except ValueError as e:
        raise TransitionValidationError(str(e)) from e


class TransitionEngine:
    """Validates and persists progress changes"""

    def __init__(self, ledger: ProgressLedgerStore, line_item_source: OrderSource):
        self.ledger = ledger
        self.line_item_source = line_item_source

    async def apply_transition(
        self,
        item: FulfillmentItem,
        target_status,
        extra: Optional[TransitionExtra] = None,
    ) -> TransitionResult:
        """
        Move an item (or, for To Dispatch, its whole order) to a new status.

        Args:
            item: The reconciled item the user acted on
            target_status: A ProgressStatus or any accepted spelling of one
            extra: Notes, dealer PO, partial quantity and confirmation flags

        Returns:
            TransitionResult: applied=False with outcome "noop" when the item is
                already in the target status, otherwise the written records

        Raises:
            TransitionValidationError: Missing PO, partial quantity out of range,
                missing or unknown target
            ConfirmationRequired: Low stock or dispatch cascade not yet confirmed
            StorageError: A ledger call failed
        """
        target = resolve_target(target_status)
        extra = extra or TransitionExtra()

        if not item.order_external_id:
            raise TransitionValidationError("Item is missing its order id")

        if item.status == target:
            logger.info(f"Order {item.order_number} SKU {item.sku} is already {target}, nothing to do")
            return TransitionResult(
                applied=False,
                outcome="noop",
                target=target,
                order_external_id=item.order_external_id,
                message=f"Item is already {target}",
            )

        if target == ProgressStatus.TO_DISPATCH:
            return await self._dispatch_order(item, extra)

        if target == ProgressStatus.PICKED:
            record = self._picked_record(item, extra)
        elif target == ProgressStatus.TO_ORDER:
            record = self._to_order_record(item, extra)
        elif target == ProgressStatus.ORDERED:
            record = self._ordered_record(item, extra)
        else:
            record = self._build_record(item, target, extra)

        await self._replace(record)
        logger.info(
            f"✅ Order {item.order_number} SKU {record.sku}: {item.status} -> {target}"
        )
        return TransitionResult(
            applied=True,
            outcome="applied",
            target=target,
            order_external_id=item.order_external_id,
            records=[record],
            message=f"Item moved to {target}",
        )

    async def reset_progress(self, item: FulfillmentItem) -> None:
        """Delete the item's ledger record so it reconciles back to To Pick"""
        try:
            await self.ledger.delete_by_key(item.order_external_id, item.ledger_sku)
        except FulfillmentError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to reset progress for {item.key}: {e}")
            raise StorageError(f"Failed to reset progress for {item.key}: {e}") from e
        logger.info(f"🔄 Reset progress for order {item.order_number} SKU {item.sku}")

    # --- Record builders ---

    def _build_record(
        self,
        item: FulfillmentItem,
        target: ProgressStatus,
        extra: TransitionExtra,
        quantity_picked: Optional[int] = 0,
        is_partial: bool = False,
        dealer_po_number: Optional[str] = None,
    ) -> ProgressRecord:
        return ProgressRecord(
            order_external_id=item.order_external_id,
            order_number=item.order_number,
            sku=item.ledger_sku,
            progress=target,
            notes=extra.notes or None,
            quantity=item.quantity,
            quantity_required=item.quantity,
            quantity_picked=quantity_picked,
            is_partial=is_partial,
            dealer_po_number=dealer_po_number,
            matched_part_number=extra.matched_part_number or None,
            order_sku_combo=f"{item.order_number}{item.ledger_sku}",
        )

    def _check_stock(self, item: FulfillmentItem, quantity: int, extra: TransitionExtra):
        if stock_shortfall(item, quantity) and not extra.confirm_low_stock:
            raise ConfirmationRequired(
                ConfirmationRequired.LOW_STOCK,
                f"Only {item.stock_quantity} of {item.sku} in stock, "
                f"{quantity} requested. Continue anyway?",
            )

    def _picked_record(self, item: FulfillmentItem, extra: TransitionExtra) -> ProgressRecord:
        required = item.quantity_required or item.quantity
        self._check_stock(item, required, extra)
        record = self._build_record(item, ProgressStatus.PICKED, extra, quantity_picked=required)
        record.quantity_required = required
        return record

    def _to_order_record(self, item: FulfillmentItem, extra: TransitionExtra) -> ProgressRecord:
        if extra.partial_quantity is None:
            return self._build_record(item, ProgressStatus.TO_ORDER, extra, quantity_picked=0)

        partial = extra.partial_quantity
        if partial < 1 or partial > item.quantity - 1:
            raise TransitionValidationError(
                f"Partial quantity must be between 1 and {item.quantity - 1}"
                if item.quantity > 1
                else "A single-quantity item cannot be partially picked"
            )
        self._check_stock(item, partial, extra)
        return self._build_record(
            item, ProgressStatus.TO_ORDER, extra, quantity_picked=partial, is_partial=True
        )

    def _ordered_record(self, item: FulfillmentItem, extra: TransitionExtra) -> ProgressRecord:
        dealer_po = (extra.dealer_po_number or "").strip()
        if not dealer_po:
            raise TransitionValidationError("Dealer PO number is required")
        return self._build_record(
            item, ProgressStatus.ORDERED, extra, quantity_picked=0, dealer_po_number=dealer_po
        )

    # --- Writes ---

    async def _replace(self, record: ProgressRecord) -> None:
        """Delete then insert the record; a failed insert puts the old rows back"""
        try:
            previous = [
                existing
                for existing in await self.ledger.list_by_order_ids([record.order_external_id])
                if existing.key == record.key
            ]
            await self.ledger.delete_by_key(record.order_external_id, record.sku)
        except FulfillmentError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to clear progress for {record.key}: {e}")
            raise StorageError(f"Failed to update progress for {record.key}: {e}") from e

        try:
            await self.ledger.insert(record)
        except Exception as e:
            logger.error(f"❌ Failed to write progress for {record.key}: {e}")
            await self._restore(record.key, previous)
            raise StorageError(f"Failed to update progress for {record.key}: {e}") from e

    async def _restore(self, key: str, previous: List[ProgressRecord]) -> None:
        for existing in previous:
            try:
                await self.ledger.insert(existing.model_copy(update={"id": None}))
            except Exception as e:
                logger.error(f"❌ Could not restore previous progress for {key}: {e}")
                raise StorageError(
                    f"Failed to update progress for {key} and the previous record "
                    f"could not be restored: {e}"
                ) from e
        if previous:
            logger.info(f"🔄 Restored previous progress for {key}")

    async def _dispatch_order(self, item: FulfillmentItem, extra: TransitionExtra) -> TransitionResult:
        if not extra.confirm_cascade:
            raise ConfirmationRequired(
                ConfirmationRequired.DISPATCH_CASCADE,
                f"This moves every item in order {item.order_number} to To Dispatch "
                f"and replaces their current progress. Continue?",
            )

        try:
            line_items = await self.line_item_source.list_line_items([item.order_id])
        except FulfillmentError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to load line items for order {item.order_number}: {e}")
            raise StorageError(f"Failed to load line items for order {item.order_number}: {e}") from e

        records = self._dispatch_records(item, line_items, extra)

        try:
            await self.ledger.delete_by_order(item.order_external_id)
        except FulfillmentError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to clear progress for order {item.order_number}: {e}")
            raise StorageError(f"Failed to clear progress for order {item.order_number}: {e}") from e

        written = 0
        for record in records:
            try:
                await self.ledger.insert(record)
            except Exception as e:
                # No rollback: records already written stay in place
                logger.error(
                    f"❌ Dispatch of order {item.order_number} stopped after "
                    f"{written} of {len(records)} items: {e}"
                )
                raise StorageError(
                    f"Dispatch of order {item.order_number} stopped after {written} of "
                    f"{len(records)} items; the order is partially updated",
                    written=written,
                    total=len(records),
                ) from e
            written += 1

        logger.info(f"🚚 Order {item.order_number}: {written} items moved to To Dispatch")
        return TransitionResult(
            applied=True,
            outcome="applied",
            target=ProgressStatus.TO_DISPATCH,
            order_external_id=item.order_external_id,
            records=records,
            message=f"All items in order {item.order_number} moved to To Dispatch",
        )

    def _dispatch_records(
        self, item: FulfillmentItem, line_items: List[OrderLineItem], extra: TransitionExtra
    ) -> List[ProgressRecord]:
        """One To Dispatch record per distinct ledger key in the order"""
        records: List[ProgressRecord] = []
        seen = set()

        for line in line_items:
            key = ledger_key(item.order_external_id, line.sku)
            if key in seen:
                continue
            seen.add(key)
            line_item = item.model_copy(update={"sku": line.sku, "quantity": line.quantity})
            records.append(
                self._build_record(
                    line_item,
                    ProgressStatus.TO_DISPATCH,
                    extra.model_copy(update={"matched_part_number": None}),
                    quantity_picked=None,
                )
            )

        if item.key not in seen:
            logger.warning(
                f"⚠️ Line items for order {item.order_number} did not include {item.sku}, "
                f"dispatching it anyway"
            )
            records.append(
                self._build_record(
                    item,
                    ProgressStatus.TO_DISPATCH,
                    extra.model_copy(update={"matched_part_number": None}),
                    quantity_picked=None,
                )
            )

        return records
