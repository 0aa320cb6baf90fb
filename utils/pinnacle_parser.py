"""
Parser for Pinnacle "Valuation Report" stock exports (CSV or Excel).
"""

import logging
import os
from typing import Any, List, Optional, Union

import pandas as pd

from constants.schemas import StockRecord

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["Part No", "Description"]
STOCK_COLUMNS = ["Stock Holding", "Stock"]
BIN_COLUMNS = ["Bin Locations", "Bin Location 1"]


def _first_present(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    for column in candidates:
        if column in df.columns:
            return column
    return None


def _number(value: Any) -> Optional[float]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).replace(",", "").replace("£", "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def parse_stock_dataframe(df: pd.DataFrame) -> List[StockRecord]:
    """
    Convert a Pinnacle export into stock records.

    Raises:
        ValueError: If a required column is missing
    """
    df.columns = [str(col).strip() for col in df.columns]

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    stock_column = _first_present(df, STOCK_COLUMNS)
    if stock_column is None:
        missing.append("Stock Holding")
    if missing:
        raise ValueError(
            f"Missing required columns: {', '.join(missing)}. "
            f"Available columns: {', '.join(df.columns)}"
        )

    bin_column = _first_present(df, BIN_COLUMNS)

    records = []
    skipped = 0
    for row in df.to_dict(orient="records"):
        part_number = _text(row.get("Part No"))
        if not part_number:
            skipped += 1
            continue

        stock = _number(row.get(stock_column))
        records.append(
            StockRecord(
                part_number=part_number,
                description=_text(row.get("Description")),
                stock_quantity=int(round(stock)) if stock is not None else None,
                bin_location=_text(row.get(bin_column)) if bin_column else None,
                cost=_number(row.get("Cost")),
                average_cost=_number(row.get("Av Cost")),
                product_group=_text(row.get("Prod Group")),
                retail_price=_number(row.get("Retail")),
            )
        )

    if skipped:
        logger.warning(f"Skipped {skipped} rows with no part number")
    logger.info(f"Parsed {len(records)} Pinnacle stock records")
    return records


def parse_pinnacle_file(source: Union[str, Any], filename: Optional[str] = None) -> List[StockRecord]:
    """
    Read a Pinnacle export from a path or an uploaded file object.

    Args:
        source: Path or file-like object
        filename: Name used to pick the reader when source is a file object

    Returns:
        List[StockRecord]: Parsed stock rows
    """
    name = filename or (source if isinstance(source, str) else getattr(source, "name", ""))
    extension = os.path.splitext(str(name))[1].lower()

    if extension in (".xlsx", ".xlsm"):
        df = pd.read_excel(source, engine="openpyxl")
    else:
        df = pd.read_csv(source, dtype={"Part No": str})

    logger.info(f"Loaded Pinnacle export with {len(df)} rows")
    return parse_stock_dataframe(df)
