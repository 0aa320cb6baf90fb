"""
Storage interfaces used by the reconciliation, transition and HD import code.

Engines receive these as constructor arguments; nothing reaches for a global
client. ``utils.supabase_handler`` and ``utils.memory_store`` provide the
implementations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from constants.schemas import (
    ExcludedOrder,
    ExclusionRecord,
    HDOrderSummary,
    Order,
    OrderLineItem,
    ProgressRecord,
    StockRecord,
)


class OrderSource(ABC):
    """Shopify orders and line items, refreshed by the import pipeline"""

    @abstractmethod
    async def list_orders(self, status_filter: Optional[str] = "unfulfilled") -> List[Order]:
        ...

    @abstractmethod
    async def list_line_items(self, order_ids: Iterable[str]) -> List[OrderLineItem]:
        ...


class StockLookup(ABC):
    """Pinnacle stock reference data, matched on exact part number"""

    @abstractmethod
    async def get_stock(self, part_numbers: Iterable[str]) -> List[StockRecord]:
        ...


class ProgressLedgerStore(ABC):
    """The iron_city_order_progress ledger"""

    @abstractmethod
    async def delete_by_key(self, order_external_id: str, sku: str) -> None:
        ...

    @abstractmethod
    async def delete_by_order(self, order_external_id: str) -> None:
        ...

    @abstractmethod
    async def insert(self, record: ProgressRecord) -> ProgressRecord:
        ...

    @abstractmethod
    async def list_by_order_ids(self, order_external_ids: Iterable[str]) -> List[ProgressRecord]:
        ...

    @abstractmethod
    async def list_by_sku(self, sku: str) -> List[ProgressRecord]:
        ...


class ExclusionLedger(ABC):
    """HD line and order exclusions (hd_line_items_exclude, hd_lineitems_exclude)"""

    @abstractmethod
    async def list_by_order_number(self, hd_order_number: str) -> List[ExclusionRecord]:
        ...

    @abstractmethod
    async def list_exclusions(self) -> List[ExclusionRecord]:
        ...

    @abstractmethod
    async def insert_exclusion(self, record: ExclusionRecord) -> ExclusionRecord:
        ...

    @abstractmethod
    async def delete_exclusion(self, exclusion_id: str) -> None:
        ...

    @abstractmethod
    async def list_excluded_orders(self) -> List[ExcludedOrder]:
        ...

    @abstractmethod
    async def insert_excluded_order(self, order: ExcludedOrder) -> ExcludedOrder:
        ...

    @abstractmethod
    async def delete_excluded_order(self, exclusion_id: str) -> None:
        ...


class HDOrderLineStore(ABC):
    """HD dealer orders and their stored line items"""

    @abstractmethod
    async def find_order_id(self, hd_order_number: str) -> Optional[str]:
        ...

    @abstractmethod
    async def list_line_numbers(self, hd_order_number: str) -> List[str]:
        ...

    @abstractmethod
    async def delete_line_items(self, hd_order_number: str) -> None:
        ...

    @abstractmethod
    async def insert_line_item(self, row: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def mark_has_line_items(self, hd_order_id: str) -> None:
        ...

    @abstractmethod
    async def record_upload(self, history: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def list_hd_orders(self) -> List[HDOrderSummary]:
        """Every HD order, newest order date first"""
        ...

    @abstractmethod
    async def list_order_numbers_with_line_items(self) -> Set[str]:
        ...


class PinnacleStockStore(ABC):
    """Write side of the Pinnacle stock table, used by the upload script"""

    @abstractmethod
    async def replace_stock(self, records: List[StockRecord]) -> int:
        ...

    @abstractmethod
    async def record_stock_upload(self, history: Dict[str, Any]) -> None:
        ...
