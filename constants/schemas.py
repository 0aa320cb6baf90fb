import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from constants.progress_status import ProgressStatus

logger = logging.getLogger(__name__)

# Ledger key SKU used when a line item has no SKU
NO_SKU = "No SKU"


def ledger_key(order_external_id: str, sku: Optional[str]) -> str:
    """Composite progress ledger key: ``{orderExternalId}_{sku}``"""
    return f"{order_external_id}_{sku or NO_SKU}"


def _as_str(value):
    # Shopify ids arrive as bigints from the REST backend
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _blank_to_none(value):
    value = _as_str(value)
    if value is not None and not value.strip():
        return None
    return value


IdStr = Annotated[str, BeforeValidator(_as_str)]
OptionalIdStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


# --- Storefront data (read-only to the engines) ---


class Order(BaseModel):
    """A Shopify order as stored in the shopify_orders table"""

    id: IdStr
    external_id: IdStr = Field(alias="shopify_order_id")
    order_number: IdStr = Field(alias="shopify_order_number", default="")
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    created_at: Optional[datetime] = None
    status: str = "unfulfilled"

    class Config:
        populate_by_name = True


class OrderLineItem(BaseModel):
    """One SKU within a Shopify order (shopify_order_items table)"""

    id: IdStr
    order_id: IdStr
    shopify_line_item_id: OptionalIdStr = None
    sku: OptionalIdStr = None
    title: str = ""
    quantity: int = 1
    price: Optional[float] = None
    location_id: OptionalIdStr = None
    location_name: Optional[str] = None

    class Config:
        populate_by_name = True


class StockRecord(BaseModel):
    """Pinnacle stock row keyed by part number"""

    part_number: IdStr = Field(alias="part_no")
    description: Optional[str] = None
    stock_quantity: Optional[int] = None
    bin_location: Optional[str] = None
    cost: Optional[float] = None
    average_cost: Optional[float] = None
    product_group: Optional[str] = None
    retail_price: Optional[float] = None

    class Config:
        populate_by_name = True

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# --- Progress ledger ---


class ProgressRecord(BaseModel):
    """
    One row of the iron_city_order_progress ledger.

    A record is always written whole: every transition deletes the previous
    row for the key and inserts a fresh one, so a field left unset here is
    gone after the write.
    """

    id: OptionalIdStr = None
    order_external_id: IdStr = Field(alias="shopify_order_id")
    order_number: OptionalIdStr = Field(alias="shopify_order_number", default=None)
    sku: IdStr = NO_SKU
    progress: Optional[ProgressStatus] = None
    notes: Optional[str] = None
    quantity: Optional[int] = None
    quantity_required: Optional[int] = None
    quantity_picked: Optional[int] = None
    is_partial: bool = False
    dealer_po_number: Optional[str] = None
    matched_part_number: Optional[str] = Field(alias="pinnacle_sku_matched", default=None)
    order_sku_combo: Optional[str] = Field(alias="shopify_ordersku_combo", default=None)
    hd_orderlinecombo: Optional[str] = None
    hd_status: Optional[str] = Field(alias="status", default=None)
    created_at: Optional[datetime] = None
    # Progress text from storage that is not a known status
    raw_progress: Optional[str] = Field(default=None, exclude=True)

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def _normalize_progress(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.get("progress")
        if raw is not None and not isinstance(raw, ProgressStatus):
            try:
                data["progress"] = ProgressStatus.parse_optional(raw)
            except ValueError:
                order_id = data.get("shopify_order_id", data.get("order_external_id"))
                logger.warning(f"⚠️ Unrecognized progress {raw!r} on order {order_id}")
                data["progress"] = None
                data["raw_progress"] = str(raw)
        if data.get("sku") is None or not str(data["sku"]).strip():
            data["sku"] = NO_SKU
        return data

    @property
    def key(self) -> str:
        return ledger_key(self.order_external_id, self.sku)

    @property
    def has_progress(self) -> bool:
        """True when the row carries any progress value, recognized or not"""
        return self.progress is not None or bool(self.raw_progress)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProgressRecord":
        return cls.model_validate(row)

    def to_row(self) -> Dict[str, Any]:
        """Serialize to ledger columns with progress in its Title Case form"""
        return self.model_dump(by_alias=True, mode="json", exclude={"id", "created_at"})


# --- Reconciled views ---


class ReconciliationMode(str, Enum):
    FULL = "full"  # kanban board and visualiser
    FILTERING = "filtering"  # legacy picklist


class FulfillmentItem(BaseModel):
    """A line item merged with its Pinnacle stock row and its ledger record"""

    # Order identity
    order_id: str
    order_external_id: str
    order_number: str = ""
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    order_created_at: Optional[datetime] = None

    # Line item identity
    line_item_id: str
    shopify_line_item_id: Optional[str] = None
    sku: Optional[str] = None
    title: str = ""
    quantity: int = 1
    price: Optional[float] = None
    location_id: Optional[str] = None
    location_name: Optional[str] = None

    # Pinnacle stock
    in_stock: bool = False
    stock_quantity: Optional[int] = None
    bin_location: Optional[str] = None
    cost: Optional[float] = None
    stock_description: Optional[str] = None

    # Progress
    status: ProgressStatus = ProgressStatus.TO_PICK
    notes: Optional[str] = None
    quantity_required: int = 0
    quantity_picked: int = 0
    is_partial: bool = False
    dealer_po_number: Optional[str] = None
    matched_part_number: Optional[str] = None
    hd_orderlinecombo: Optional[str] = None
    hd_status: Optional[str] = None
    has_progress_record: bool = False
    unrecognized_progress: Optional[str] = None

    @property
    def key(self) -> str:
        return ledger_key(self.order_external_id, self.sku)

    @property
    def ledger_sku(self) -> str:
        return self.sku or NO_SKU


class PicklistOrder(BaseModel):
    """An order and the reconciled items that survived the pass"""

    id: str
    external_id: str
    order_number: str = ""
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    created_at: Optional[datetime] = None
    status: str = "unfulfilled"
    items: List[FulfillmentItem] = Field(default_factory=list)


class StatusCounts(BaseModel):
    to_pick: int = 0
    picking: int = 0
    picked: int = 0
    to_order: int = 0
    ordered: int = 0
    to_dispatch: int = 0
    fulfilled: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return sum(self.model_dump().values())


class ReconciliationStats(BaseModel):
    order_count: int = 0
    line_item_count: int = 0
    progress_item_count: int = 0
    final_order_count: int = 0
    final_item_count: int = 0
    time_taken: float = 0.0


class ReconciliationResult(BaseModel):
    mode: ReconciliationMode
    items: List[FulfillmentItem] = Field(default_factory=list)
    orders: List[PicklistOrder] = Field(default_factory=list)
    counts: StatusCounts = Field(default_factory=StatusCounts)
    stats: ReconciliationStats = Field(default_factory=ReconciliationStats)


# --- Transitions ---


class TransitionExtra(BaseModel):
    """Transition-specific input supplied by the caller"""

    notes: Optional[str] = None
    dealer_po_number: Optional[str] = None
    partial_quantity: Optional[int] = None
    matched_part_number: Optional[str] = None
    confirm_low_stock: bool = False
    confirm_cascade: bool = False


class TransitionResult(BaseModel):
    applied: bool
    outcome: Literal["applied", "noop"]
    target: ProgressStatus
    order_external_id: str
    records: List[ProgressRecord] = Field(default_factory=list)
    message: str = ""


# --- HD order lines and exclusions ---

ExclusionReason = Literal["Check In", "Not Shopify"]


class ExclusionRecord(BaseModel):
    """A line of an HD order that must never be re-imported"""

    id: OptionalIdStr = None
    hd_order_number: IdStr
    line_number: OptionalIdStr = None
    part_number: OptionalIdStr = None
    hd_orderlinecombo: Optional[str] = None
    reason: ExclusionReason = "Check In"
    created_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @property
    def part_combo(self) -> Optional[str]:
        """``{orderNumber}{partNumber}`` match value, if this exclusion names a part"""
        if self.hd_orderlinecombo:
            return self.hd_orderlinecombo
        if self.part_number:
            return f"{self.hd_order_number}{self.part_number}"
        return None

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(mode="json", exclude={"id", "created_at"})
        row["hd_orderlinecombo"] = self.part_combo
        return row


class ExcludedOrder(BaseModel):
    """
    A whole HD order excluded from import.

    Only the order number and reason are stored; dealer PO and order type are
    filled in from hd_orders when listing.
    """

    id: OptionalIdStr = None
    hd_order_number: IdStr
    dealer_po_number: Optional[str] = None
    order_type: Optional[str] = None
    reason: str = ""
    created_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {"hd_order_number": self.hd_order_number, "reason": self.reason}


class HDOrderSummary(BaseModel):
    """An hd_orders row as listed on the upload page"""

    hd_order_number: IdStr
    dealer_po_number: Optional[str] = None
    order_type: Optional[str] = None
    order_date: Optional[str] = None


class HDOrderLineItem(BaseModel):
    """A normalized HD order line as produced by the Excel parser"""

    hd_order_number: OptionalIdStr = None
    line_number: IdStr
    part_number: OptionalIdStr = None
    description: str = ""
    order_quantity: float = 0
    open_quantity: float = 0
    unit_price: float = 0
    total_price: float = 0
    status: str = ""
    dealer_po_number: str = ""
    order_date: Optional[str] = None
    backorder_clear_by: Optional[str] = None
    projected_shipping_quantity: float = 0
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None

    def to_row(self, hd_order_id: str) -> Dict[str, Any]:
        row = self.model_dump(mode="json")
        row["hd_order_id"] = hd_order_id
        row["part_number"] = self.part_number or ""
        return row


class UploadStats(BaseModel):
    processed: int = 0
    replaced: int = 0
    errors: int = 0
    skipped: int = 0


class OrderProcessingResult(BaseModel):
    hd_order_number: str
    processed_count: int = 0
    replaced_line_numbers: List[str] = Field(default_factory=list)
    skipped_line_numbers: List[str] = Field(default_factory=list)
    errors_count: int = 0
