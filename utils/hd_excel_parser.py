"""
Parser for Harley-Davidson order-line Excel exports.

HD exports change their column headers between report versions, so every
field is matched against a list of known header variations (case-insensitive),
with a fuzzy fallback for the columns that vary the most.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from constants.schemas import HDOrderLineItem

logger = logging.getLogger(__name__)

COLUMN_VARIATIONS: Dict[str, List[str]] = {
    "hd_order_number": ["HD ORDER NUMBER", "ORDER NUMBER", "SALES ORDER", "HD ORDER", "ORDER #"],
    "line_number": ["LINE NUMBER", "LINE", "LINE #", "*LINE"],
    "part_number": ["PART NUMBER", "PART", "PART #", "PART NO", "*PART NUMBER"],
    "description": ["DESCRIPTION", "PART DESCRIPTION", "*DESCRIPTION"],
    "order_quantity": ["ORDER QUANTITY", "ORDER QTY", "QUANTITY"],
    "open_quantity": ["OPEN QUANTITY", "OPEN QTY"],
    "unit_price": ["UNIT PRICE", "PRICE"],
    "total_price": ["TOTAL PRICE", "TOTAL", "*TOTAL"],
    "status": ["STATUS"],
    "dealer_po_number": [
        "DEALER PO NUMBER", "PO NUMBER", "PURCHASE ORDER", "DEALER PO",
        "CUST PO", "*DEALER PO NUMBER", "CUSTOMER PO", "DEALER PO#",
    ],
    "order_date": ["ORDER DATE", "DATE"],
    "invoice_number": [
        "INVOICE NUMBER", "INVOICE #", "INVOICE", "INV NUMBER", "INV #", "*INVOICE NUMBER",
    ],
    "invoice_date": ["INVOICE DATE", "INV DATE", "*INVOICE DATE"],
    "backorder_clear_by": [
        "BACKORDER CLEAR BY", "B/O CLEAR BY", "BO CLEAR", "BO CLEAR BY", "*B/O CLEAR",
        "CLEAR BY", "B/O CLEAR DATE", "BACKORDER CLEAR", "BACK ORDER CLEAR BY", "CLEAR DATE",
    ],
    "projected_shipping_quantity": [
        "PROJECTED SHIPPING QUANTITY", "PROJ SHIPPING QTY", "*PROJECTED SHIPPING QTY",
        "PROJECTED SHIPPING", "PROJ SHIP QTY", "SHIP QTY", "PROJECTED QTY", "SHIPPING QTY",
    ],
}

NUMERIC_FIELDS = {
    "order_quantity",
    "open_quantity",
    "unit_price",
    "total_price",
    "projected_shipping_quantity",
}
DATE_FIELDS = {"order_date", "invoice_date", "backorder_clear_by"}


def _fuzzy_match(header: str) -> Optional[str]:
    upper = header.upper()
    if "DEALER" in upper and "PO" in upper:
        return "dealer_po_number"
    if ("B/O" in upper or "BACKORDER" in upper) and ("CLEAR" in upper or "DATE" in upper):
        return "backorder_clear_by"
    if "INVOICE" in upper and "DATE" in upper:
        return "invoice_date"
    if "INVOICE" in upper and ("NUMBER" in upper or "#" in upper):
        return "invoice_number"
    return None


def detect_column_mappings(columns: List[Any]) -> Dict[str, str]:
    """
    Map canonical field names to the actual headers found in the file.

    Args:
        columns: Header row of the sheet

    Returns:
        Dict[str, str]: canonical field -> actual column header
    """
    headers = {str(col).strip().upper(): col for col in columns}
    mapping: Dict[str, str] = {}

    for field, variations in COLUMN_VARIATIONS.items():
        for variation in variations:
            if variation in headers:
                mapping[field] = headers[variation]
                break

    for header_upper, header in headers.items():
        if header in mapping.values():
            continue
        field = _fuzzy_match(header_upper)
        if field and field not in mapping:
            logger.info(f"Fuzzy matched column {header!r} -> {field}")
            mapping[field] = header

    logger.info(f"Detected HD column mappings: {mapping}")
    return mapping


def parse_numeric_value(value: Any) -> float:
    """Parse a number, stripping anything that is not a digit or decimal point"""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    numeric = re.sub(r"[^0-9.]", "", str(value))
    try:
        return float(numeric) if numeric else 0.0
    except ValueError:
        logger.warning(f"Could not parse numeric value {value!r}")
        return 0.0


def _format_date(value: Any) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.strftime("%Y-%m-%d")
    text = str(value).strip()
    return text or None


def _format_text(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel hands back order and line numbers as floats
        return str(int(value))
    return str(value).strip()


def map_row(row: Dict[str, Any], mapping: Dict[str, str]) -> HDOrderLineItem:
    values: Dict[str, Any] = {}
    for field in COLUMN_VARIATIONS:
        column = mapping.get(field)
        raw = row.get(column) if column is not None else None
        if field in NUMERIC_FIELDS:
            values[field] = parse_numeric_value(raw)
        elif field in DATE_FIELDS:
            values[field] = _format_date(raw)
        else:
            values[field] = _format_text(raw)

    if not values["hd_order_number"] or not values["part_number"]:
        logger.warning(f"Row is missing an HD order number or part number: {row}")

    values["hd_order_number"] = values["hd_order_number"] or None
    values["part_number"] = values["part_number"] or None
    values["invoice_number"] = values["invoice_number"] or None
    return HDOrderLineItem(**values)


def parse_dataframe(df: pd.DataFrame) -> List[HDOrderLineItem]:
    if df.empty:
        raise ValueError("No data found in Excel file")

    mapping = detect_column_mappings(list(df.columns))
    if "hd_order_number" not in mapping or "line_number" not in mapping:
        raise ValueError(
            f"Missing HD order number or line number column. "
            f"Available columns: {', '.join(str(c) for c in df.columns)}"
        )

    df = df.dropna(how="all")
    lines = [map_row(row, mapping) for row in df.to_dict(orient="records")]
    logger.info(f"Parsed {len(lines)} HD order lines")
    return lines


def parse_hd_order_lines(source: Union[str, Any]) -> List[HDOrderLineItem]:
    """
    Read the first sheet of an HD order-line export.

    Args:
        source: Path or file-like object of an .xlsx file

    Returns:
        List[HDOrderLineItem]: One parsed line per data row
    """
    df = pd.read_excel(source, engine="openpyxl", sheet_name=0)
    logger.info(f"Excel file loaded with {len(df)} rows and columns: {df.columns.tolist()}")
    return parse_dataframe(df)
