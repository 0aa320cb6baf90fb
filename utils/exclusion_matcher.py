"""
HD order-line import with exclusion matching.

When an HD order's line items are uploaded again, lines that staff have
checked in (or marked as not Shopify) must not come back. Each HD order in an
upload is processed on its own: its stored lines are replaced by the parsed
ones minus the excluded lines, and a failure only affects that order.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from constants.errors import ExclusionError, FulfillmentError, StorageError
from constants.schemas import (
    ExcludedOrder,
    ExclusionReason,
    ExclusionRecord,
    HDOrderLineItem,
    HDOrderSummary,
    OrderProcessingResult,
    UploadStats,
)
from utils.stores import ExclusionLedger, HDOrderLineStore

logger = logging.getLogger(__name__)


def build_exclusion_sets(exclusions: Iterable[ExclusionRecord]) -> Tuple[Set[str], Set[str]]:
    """
    Build the two lookup sets used to skip lines.

    Returns:
        Tuple[Set[str], Set[str]]: Excluded line numbers, and excluded
            ``{orderNumber}{partNumber}`` combinations
    """
    line_numbers: Set[str] = set()
    combos: Set[str] = set()
    for exclusion in exclusions:
        if exclusion.line_number:
            line_numbers.add(exclusion.line_number)
        combo = exclusion.part_combo
        if combo:
            combos.add(combo)
    return line_numbers, combos


def is_excluded(
    hd_order_number: str,
    line: HDOrderLineItem,
    excluded_lines: Set[str],
    excluded_combos: Set[str],
) -> bool:
    if str(line.line_number) in excluded_lines:
        return True
    return f"{hd_order_number}{line.part_number or ''}" in excluded_combos


def group_by_order_number(lines: Iterable[HDOrderLineItem]) -> Dict[str, List[HDOrderLineItem]]:
    """Group parsed lines by HD order number, skipping lines without one"""
    grouped: Dict[str, List[HDOrderLineItem]] = {}
    for line in lines:
        if not line.hd_order_number:
            logger.warning(f"⚠️ Skipping line {line.line_number} with no HD order number")
            continue
        grouped.setdefault(line.hd_order_number, []).append(line)
    return grouped


class HDOrderLineImporter:
    """Replaces stored HD order lines with freshly parsed ones, honouring exclusions"""

    def __init__(self, exclusion_ledger: ExclusionLedger, line_store: HDOrderLineStore):
        self.exclusion_ledger = exclusion_ledger
        self.line_store = line_store

    async def process_order(
        self, hd_order_number: str, lines: List[HDOrderLineItem]
    ) -> OrderProcessingResult:
        """
        Replace the stored lines of one HD order.

        A lookup or delete failure aborts this order with one error counted.
        An insert failure counts an error and moves on to the next line.
        """
        result = OrderProcessingResult(hd_order_number=hd_order_number)
        logger.info(f"Processing {len(lines)} line items for HD order {hd_order_number}")

        try:
            hd_order_id = await self.line_store.find_order_id(hd_order_number)
            if hd_order_id is None:
                logger.warning(f"⚠️ HD order {hd_order_number} not found, skipping its line items")
                result.errors_count += 1
                return result

            exclusions = await self.exclusion_ledger.list_by_order_number(hd_order_number)
            excluded_lines, excluded_combos = build_exclusion_sets(exclusions)

            existing_lines = set(await self.line_store.list_line_numbers(hd_order_number))

            # Only this order's lines are replaced
            await self.line_store.delete_line_items(hd_order_number)
        except Exception as e:
            logger.error(f"❌ Failed to prepare HD order {hd_order_number}: {e}")
            result.errors_count += 1
            return result

        for line in lines:
            line_number = str(line.line_number)
            if is_excluded(hd_order_number, line, excluded_lines, excluded_combos):
                logger.info(
                    f"Skipping excluded line: order {hd_order_number}, line {line_number}, "
                    f"part {line.part_number or ''}"
                )
                result.skipped_line_numbers.append(line_number)
                continue

            try:
                await self.line_store.insert_line_item(line.to_row(hd_order_id))
            except Exception as e:
                logger.error(f"❌ Failed to insert line {line_number} of HD order {hd_order_number}: {e}")
                result.errors_count += 1
                continue

            if line_number in existing_lines:
                result.replaced_line_numbers.append(line_number)
            result.processed_count += 1

        if result.replaced_line_numbers:
            logger.info(
                f"Replaced {len(result.replaced_line_numbers)} existing line items for HD order "
                f"{hd_order_number}: {', '.join(result.replaced_line_numbers)}"
            )

        try:
            await self.line_store.mark_has_line_items(hd_order_id)
        except Exception as e:
            logger.error(f"❌ Failed to flag HD order {hd_order_number} as having line items: {e}")
            result.errors_count += 1

        return result

    async def import_order_lines(
        self, lines: List[HDOrderLineItem], filename: Optional[str] = None
    ) -> UploadStats:
        """
        Process every HD order found in a parsed upload.

        Args:
            lines: Parsed HD order lines, possibly spanning many orders
            filename: Uploaded file name, recorded in the upload history

        Returns:
            UploadStats: Aggregate processed / replaced / errors / skipped counts
        """
        stats = UploadStats()
        if not lines:
            logger.warning("No HD order lines to process")
            return stats

        grouped = group_by_order_number(lines)
        logger.info(f"🚀 Found {len(grouped)} HD orders in upload: {', '.join(grouped)}")

        for hd_order_number, order_lines in grouped.items():
            result = await self.process_order(hd_order_number, order_lines)
            stats.processed += result.processed_count
            stats.replaced += len(result.replaced_line_numbers)
            stats.errors += result.errors_count
            stats.skipped += len(result.skipped_line_numbers)

        logger.info(
            f"✅ HD upload complete: {stats.processed} processed, {stats.replaced} replaced, "
            f"{stats.skipped} excluded, {stats.errors} errors"
        )

        if filename:
            await self._record_history(filename, stats)
        return stats

    async def list_orders_needing_line_items(self) -> List[HDOrderSummary]:
        """
        HD orders still waiting for a line-item upload.

        Orders that already have stored lines and orders excluded as a whole
        are left out.

        Raises:
            StorageError: A store read failed
        """
        try:
            excluded_orders = await self.exclusion_ledger.list_excluded_orders()
            excluded = {order.hd_order_number for order in excluded_orders}
            with_lines = await self.line_store.list_order_numbers_with_line_items()
            orders = await self.line_store.list_hd_orders()
        except FulfillmentError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to load HD orders needing line items: {e}")
            raise StorageError(f"Failed to load HD orders needing line items: {e}") from e

        waiting = [
            order
            for order in orders
            if order.hd_order_number not in excluded and order.hd_order_number not in with_lines
        ]
        logger.info(f"{len(waiting)} of {len(orders)} HD orders need line items")
        return waiting

    async def _record_history(self, filename: str, stats: UploadStats) -> None:
        history = {
            "upload_type": "order_lines",
            "filename": filename,
            "items_count": stats.processed,
            "replaced_previous": stats.replaced > 0,
            "status": "success" if stats.errors == 0 else "partial",
            "upload_date": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.line_store.record_upload(history)
        except Exception as e:
            # The lines are already stored; history is informational
            logger.error(f"❌ Failed to record upload history for {filename}: {e}")


class ExclusionManager:
    """Staff-facing exclusion CRUD"""

    def __init__(self, exclusion_ledger: ExclusionLedger):
        self.exclusion_ledger = exclusion_ledger

    async def add_line_exclusion(
        self,
        hd_order_number: str,
        line_number: Optional[str] = None,
        part_number: Optional[str] = None,
        reason: ExclusionReason = "Check In",
    ) -> ExclusionRecord:
        """Exclude one line of an HD order, refusing duplicates of (order, line)"""
        if not hd_order_number or not hd_order_number.strip():
            raise ExclusionError("HD order number is required")
        if not line_number and not part_number:
            raise ExclusionError("A line number or part number is required")

        record = ExclusionRecord(
            hd_order_number=hd_order_number.strip(),
            line_number=line_number,
            part_number=part_number,
            reason=reason,
        )

        existing = await self._call(
            self.exclusion_ledger.list_by_order_number(record.hd_order_number),
            "check existing exclusions",
        )
        for exclusion in existing:
            same_line = record.line_number and exclusion.line_number == record.line_number
            same_part = (
                not record.line_number
                and not exclusion.line_number
                and exclusion.part_combo == record.part_combo
            )
            if same_line or same_part:
                raise ExclusionError(
                    f"Line {record.line_number or record.part_number} of order "
                    f"{record.hd_order_number} is already excluded"
                )

        stored = await self._call(
            self.exclusion_ledger.insert_exclusion(record), "add exclusion"
        )
        logger.info(
            f"✅ Excluded order {stored.hd_order_number} line {stored.line_number} "
            f"part {stored.part_number} ({stored.reason})"
        )
        return stored

    async def remove_exclusion(self, exclusion_id: str) -> None:
        await self._call(self.exclusion_ledger.delete_exclusion(exclusion_id), "remove exclusion")
        logger.info(f"🗑️ Removed exclusion {exclusion_id}")

    async def list_exclusions(self) -> List[ExclusionRecord]:
        return await self._call(self.exclusion_ledger.list_exclusions(), "list exclusions")

    async def add_order_exclusion(self, hd_order_number: str, reason: str) -> ExcludedOrder:
        if not hd_order_number or not hd_order_number.strip():
            raise ExclusionError("HD order number is required")

        existing = await self.list_order_exclusions()
        if any(order.hd_order_number == hd_order_number.strip() for order in existing):
            raise ExclusionError(f"Order {hd_order_number} is already excluded")

        order = ExcludedOrder(hd_order_number=hd_order_number.strip(), reason=reason or "")
        return await self._call(
            self.exclusion_ledger.insert_excluded_order(order), "exclude order"
        )

    async def remove_order_exclusion(self, exclusion_id: str) -> None:
        await self._call(
            self.exclusion_ledger.delete_excluded_order(exclusion_id), "remove order exclusion"
        )
        logger.info(f"🗑️ Removed order exclusion {exclusion_id}")

    async def list_order_exclusions(self) -> List[ExcludedOrder]:
        return await self._call(
            self.exclusion_ledger.list_excluded_orders(), "list excluded orders"
        )

    async def _call(self, awaitable, action: str):
        try:
            return await awaitable
        except ExclusionError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to {action}: {e}")
            raise ExclusionError(f"Failed to {action}: {e}") from e
