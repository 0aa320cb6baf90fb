"""
Supabase Handler Module

This module talks to the Supabase REST (PostgREST) API that backs the
dashboard: Shopify orders and line items, Pinnacle stock, the order progress
ledger, and the HD order-line tables.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import aiohttp
from dotenv import load_dotenv

from constants.errors import StorageError
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

# Load environment variables
load_dotenv()

PAGE_SIZE = 1000
IN_FILTER_CHUNK = 100
INSERT_BATCH_SIZE = 100

Filters = List[Tuple[str, str]]


def _in_filter(values: Iterable[str]) -> str:
    quoted = []
    for value in values:
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{escaped}"')
    return f"in.({','.join(quoted)})"


def _chunks(values: List[str], size: int):
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SupabaseHandler(
    OrderSource,
    StockLookup,
    ProgressLedgerStore,
    ExclusionLedger,
    HDOrderLineStore,
    PinnacleStockStore,
):
    """Async handler for the Supabase tables used by the fulfillment dashboard."""

    def __init__(self, url: Optional[str] = None, service_role_key: Optional[str] = None):
        """
        Initialize the handler with credentials from arguments or environment variables.

        Args:
            url (Optional[str]): Supabase project URL, defaults to SUPABASE_URL
            service_role_key (Optional[str]): Service role key, defaults to SUPABASE_SERVICE_ROLE_KEY
        """
        self.url = url or os.getenv("SUPABASE_URL")
        self.service_role_key = service_role_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        if not self.url or not self.service_role_key:
            raise ValueError("Supabase URL or service role key not found in environment variables")

        self.headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }
        self.base_url = f"{self.url.rstrip('/')}/rest/v1"

        self.tables = {
            "orders": "shopify_orders",
            "order_items": "shopify_order_items",
            "progress": "iron_city_order_progress",
            "stock": "pinnacle_stock",
            "stock_uploads": "pinnacle_upload_history",
            "hd_orders": "hd_orders",
            "hd_line_items": "hd_order_line_items",
            "hd_line_exclusions": "hd_line_items_exclude",
            "hd_order_exclusions": "hd_lineitems_exclude",
            "hd_uploads": "hd_upload_history",
        }

    # --- Low-level REST calls ---

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Filters] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}/{table}"
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method, url, headers=headers, params=params or [], json=payload
                ) as response:
                    if response.status >= 400:
                        text = await response.text()
                        raise StorageError(
                            f"Failed to {method} {table}: {response.status} {text}"
                        )
                    if response.status == 204:
                        return None
                    body = await response.text()
                    if not body:
                        return None
                    return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise StorageError(f"Failed to {method} {table}: {e}") from e

    async def _select(
        self, table: str, filters: Optional[Filters] = None, columns: str = "*"
    ) -> List[Dict[str, Any]]:
        """Fetch every row matching the filters, one page at a time"""
        all_rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            params = [("select", columns)] + list(filters or [])
            params += [("limit", str(PAGE_SIZE)), ("offset", str(offset))]
            rows = await self._request("GET", table, params=params) or []
            all_rows.extend(rows)
            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return all_rows

    async def _select_in(
        self,
        table: str,
        column: str,
        values: Iterable[str],
        filters: Optional[Filters] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        unique = list(dict.fromkeys(str(v) for v in values if v is not None))
        rows: List[Dict[str, Any]] = []
        for chunk in _chunks(unique, IN_FILTER_CHUNK):
            chunk_filters = [(column, _in_filter(chunk))] + list(filters or [])
            rows.extend(await self._select(table, chunk_filters, columns))
        return rows

    async def _insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        result = await self._request(
            "POST", table, payload=rows, prefer="return=representation"
        )
        return result or []

    async def _delete(self, table: str, filters: Filters) -> None:
        if not filters:
            raise ValueError(f"Refusing to delete from {table} without a filter")
        await self._request("DELETE", table, params=filters)

    async def _update(self, table: str, filters: Filters, values: Dict[str, Any]) -> None:
        await self._request("PATCH", table, params=filters, payload=values)

    # --- OrderSource ---

    async def list_orders(self, status_filter: Optional[str] = "unfulfilled") -> List[Order]:
        filters = [("status", f"eq.{status_filter}")] if status_filter else []
        filters.append(("order", "created_at.desc"))
        rows = await self._select(self.tables["orders"], filters)
        return [Order.model_validate(row) for row in rows]

    async def list_line_items(self, order_ids: Iterable[str]) -> List[OrderLineItem]:
        rows = await self._select_in(self.tables["order_items"], "order_id", order_ids)
        return [OrderLineItem.model_validate(row) for row in rows]

    # --- StockLookup ---

    async def get_stock(self, part_numbers: Iterable[str]) -> List[StockRecord]:
        rows = await self._select_in(self.tables["stock"], "part_no", part_numbers)
        return [StockRecord.model_validate(row) for row in rows]

    # --- ProgressLedgerStore ---

    async def delete_by_key(self, order_external_id: str, sku: str) -> None:
        await self._delete(
            self.tables["progress"],
            [("shopify_order_id", f"eq.{order_external_id}"), ("sku", f"eq.{sku or NO_SKU}")],
        )

    async def delete_by_order(self, order_external_id: str) -> None:
        await self._delete(
            self.tables["progress"], [("shopify_order_id", f"eq.{order_external_id}")]
        )

    async def insert(self, record: ProgressRecord) -> ProgressRecord:
        rows = await self._insert(self.tables["progress"], [record.to_row()])
        return ProgressRecord.from_row(rows[0]) if rows else record

    async def list_by_order_ids(self, order_external_ids: Iterable[str]) -> List[ProgressRecord]:
        rows = await self._select_in(
            self.tables["progress"], "shopify_order_id", order_external_ids
        )
        return [ProgressRecord.from_row(row) for row in rows]

    async def list_by_sku(self, sku: str) -> List[ProgressRecord]:
        rows = await self._select(self.tables["progress"], [("sku", f"eq.{sku}")])
        return [ProgressRecord.from_row(row) for row in rows]

    # --- ExclusionLedger ---

    async def list_by_order_number(self, hd_order_number: str) -> List[ExclusionRecord]:
        rows = await self._select(
            self.tables["hd_line_exclusions"], [("hd_order_number", f"eq.{hd_order_number}")]
        )
        return [ExclusionRecord.model_validate(row) for row in rows]

    async def list_exclusions(self) -> List[ExclusionRecord]:
        rows = await self._select(
            self.tables["hd_line_exclusions"], [("order", "created_at.desc")]
        )
        return [ExclusionRecord.model_validate(row) for row in rows]

    async def insert_exclusion(self, record: ExclusionRecord) -> ExclusionRecord:
        rows = await self._insert(self.tables["hd_line_exclusions"], [record.to_row()])
        return ExclusionRecord.model_validate(rows[0]) if rows else record

    async def delete_exclusion(self, exclusion_id: str) -> None:
        await self._delete(self.tables["hd_line_exclusions"], [("id", f"eq.{exclusion_id}")])

    async def list_excluded_orders(self) -> List[ExcludedOrder]:
        rows = await self._select(self.tables["hd_order_exclusions"])
        if not rows:
            return []

        # Dealer PO and order type live on hd_orders
        order_rows = await self._select_in(
            self.tables["hd_orders"],
            "hd_order_number",
            [row["hd_order_number"] for row in rows],
            columns="hd_order_number,dealer_po_number,order_type",
        )
        details = {row["hd_order_number"]: row for row in order_rows}

        excluded = []
        for row in rows:
            detail = details.get(row["hd_order_number"], {})
            excluded.append(
                ExcludedOrder(
                    id=row.get("id"),
                    hd_order_number=row["hd_order_number"],
                    reason=row.get("reason") or "",
                    created_at=row.get("created_at"),
                    dealer_po_number=detail.get("dealer_po_number"),
                    order_type=detail.get("order_type"),
                )
            )
        return excluded

    async def insert_excluded_order(self, order: ExcludedOrder) -> ExcludedOrder:
        rows = await self._insert(self.tables["hd_order_exclusions"], [order.to_row()])
        if not rows:
            return order
        return order.model_copy(update={"id": str(rows[0].get("id"))})

    async def delete_excluded_order(self, exclusion_id: str) -> None:
        await self._delete(self.tables["hd_order_exclusions"], [("id", f"eq.{exclusion_id}")])

    # --- HDOrderLineStore ---

    async def find_order_id(self, hd_order_number: str) -> Optional[str]:
        params = [
            ("select", "id"),
            ("hd_order_number", f"eq.{hd_order_number}"),
            ("limit", "1"),
        ]
        rows = await self._request("GET", self.tables["hd_orders"], params=params) or []
        return str(rows[0]["id"]) if rows else None

    async def list_line_numbers(self, hd_order_number: str) -> List[str]:
        rows = await self._select(
            self.tables["hd_line_items"],
            [("hd_order_number", f"eq.{hd_order_number}")],
            columns="id,line_number",
        )
        return [str(row["line_number"]) for row in rows]

    async def delete_line_items(self, hd_order_number: str) -> None:
        await self._delete(
            self.tables["hd_line_items"], [("hd_order_number", f"eq.{hd_order_number}")]
        )

    async def insert_line_item(self, row: Dict[str, Any]) -> None:
        await self._insert(self.tables["hd_line_items"], [row])

    async def mark_has_line_items(self, hd_order_id: str) -> None:
        await self._update(
            self.tables["hd_orders"], [("id", f"eq.{hd_order_id}")], {"has_line_items": True}
        )

    async def record_upload(self, history: Dict[str, Any]) -> None:
        await self._insert(self.tables["hd_uploads"], [history])

    async def list_hd_orders(self) -> List[HDOrderSummary]:
        rows = await self._select(
            self.tables["hd_orders"],
            [("order", "order_date.desc.nullslast")],
            columns="hd_order_number,dealer_po_number,order_type,order_date",
        )
        return [HDOrderSummary.model_validate(row) for row in rows]

    async def list_order_numbers_with_line_items(self) -> Set[str]:
        rows = await self._select(self.tables["hd_line_items"], columns="hd_order_number")
        return {str(row["hd_order_number"]) for row in rows if row.get("hd_order_number")}

    # --- PinnacleStockStore ---

    async def replace_stock(self, records: List[StockRecord]) -> int:
        """
        Replace the whole Pinnacle stock table with the given records.

        Returns:
            int: Number of rows inserted
        """
        # PostgREST needs a filter on DELETE; every row has a part number
        await self._delete(self.tables["stock"], [("part_no", "not.is.null")])

        now = datetime.now(timezone.utc).isoformat()
        rows = []
        for record in records:
            row = record.to_row()
            row["last_updated"] = now
            rows.append(row)

        inserted = 0
        for batch in _chunks(rows, INSERT_BATCH_SIZE):
            await self._insert(self.tables["stock"], batch)
            inserted += len(batch)
            logger.info(f"Inserted batch of {len(batch)} stock rows ({inserted}/{len(rows)})")
        return inserted

    async def record_stock_upload(self, history: Dict[str, Any]) -> None:
        await self._insert(self.tables["stock_uploads"], [history])
