#!/usr/bin/env python3
"""
Upload Pinnacle Stock

Replaces the pinnacle_stock table with the rows of a Pinnacle Valuation Report
export (CSV or Excel) and records the upload in pinnacle_upload_history.

Usage:
    python scripts/upload_pinnacle_stock.py path/to/valuation_report.csv
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Dict

# Add project root to path to allow importing modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from utils.pinnacle_parser import parse_pinnacle_file
from utils.supabase_handler import SupabaseHandler

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def upload_pinnacle_stock(file_path: str, store=None) -> Dict[str, int]:
    """
    Replace the stock table with the contents of a Pinnacle export.

    Args:
        file_path (str): Path to the CSV or .xlsx export
        store: PinnacleStockStore to write to, defaults to SupabaseHandler

    Returns:
        Dict[str, int]: Statistics about the upload
    """
    logger.info(f"Starting Pinnacle stock upload from {file_path}")
    store = store or SupabaseHandler()
    filename = os.path.basename(file_path)
    stats = {"parsed": 0, "inserted": 0, "errors": 0}

    try:
        records = parse_pinnacle_file(file_path)
        stats["parsed"] = len(records)
        stats["inserted"] = await store.replace_stock(records)
        status, error_message = "success", None
    except Exception as e:
        logger.error(f"❌ Pinnacle upload failed: {e}")
        stats["errors"] += 1
        status, error_message = "error", str(e)

    await store.record_stock_upload({
        "filename": filename,
        "records_count": stats["inserted"],
        "status": status,
        "error_message": error_message,
        "upload_timestamp": datetime.now(timezone.utc).isoformat(),
    })

    logger.info(f"Upload finished: {stats}")
    return stats


def main():
    parser = argparse.ArgumentParser(description="Replace Pinnacle stock from an export file")
    parser.add_argument("file_path", help="Pinnacle Valuation Report export (.csv or .xlsx)")
    args = parser.parse_args()

    stats = asyncio.run(upload_pinnacle_stock(args.file_path))
    sys.exit(1 if stats["errors"] else 0)


if __name__ == "__main__":
    main()
