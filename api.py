"""
FastAPI endpoints for the Iron City fulfillment dashboard.
This runs alongside the Streamlit app in the same container.
"""

import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from constants.errors import (
    ConfirmationRequired,
    ExclusionError,
    ReconciliationError,
    StorageError,
    TransitionValidationError,
)
from constants.schemas import (
    ExclusionReason,
    FulfillmentItem,
    ReconciliationMode,
    TransitionExtra,
)
from utils.board import build_columns
from utils.hd_excel_parser import parse_hd_order_lines
from utils.services import get_services

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Make sure other loggers are also set to INFO level
logging.getLogger('utils.reconciliation').setLevel(logging.INFO)
logging.getLogger('utils.transition_engine').setLevel(logging.INFO)
logging.getLogger('utils.exclusion_matcher').setLevel(logging.INFO)

# Create FastAPI app
app = FastAPI(
    title="Iron City Fulfillment API",
    description="Order progress, kanban board and HD order-line endpoints",
    version="1.0.0"
)


class TransitionRequest(BaseModel):
    line_item_id: str
    target_status: str
    notes: Optional[str] = None
    dealer_po_number: Optional[str] = None
    partial_quantity: Optional[int] = None
    matched_part_number: Optional[str] = None
    confirm_low_stock: bool = False
    confirm_cascade: bool = False


class ExclusionRequest(BaseModel):
    hd_order_number: str
    line_number: Optional[str] = None
    part_number: Optional[str] = None
    reason: ExclusionReason = "Check In"


class OrderExclusionRequest(BaseModel):
    hd_order_number: str
    reason: str = ""


# --- Error mapping ---

@app.exception_handler(TransitionValidationError)
async def validation_error_handler(request: Request, exc: TransitionValidationError):
    return JSONResponse(status_code=422, content={"success": False, "error": str(exc)})


@app.exception_handler(ExclusionError)
async def exclusion_error_handler(request: Request, exc: ExclusionError):
    return JSONResponse(status_code=422, content={"success": False, "error": str(exc)})


@app.exception_handler(ConfirmationRequired)
async def confirmation_required_handler(request: Request, exc: ConfirmationRequired):
    return JSONResponse(
        status_code=409,
        content={"success": False, "confirmation_required": exc.kind, "message": exc.message},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"❌ Storage error on {request.url.path}: {exc}")
    content = {"success": False, "error": str(exc)}
    if exc.total is not None:
        content["written"] = exc.written
        content["total"] = exc.total
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    logger.error(f"❌ Reconciliation failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


def verify_key(key: Optional[str]):
    """Mutating endpoints require TRIGGER_SECRET_KEY when it is configured"""
    expected_key = get_services().settings.trigger_secret_key
    if expected_key and key != expected_key:
        logger.warning("Invalid secret key provided")
        raise HTTPException(status_code=401, detail="Invalid secret key")


async def find_item(line_item_id: str) -> FulfillmentItem:
    services = get_services()
    result = await services.reconciliation.reconcile(services.settings.order_status_filter)
    for item in result.items:
        if item.line_item_id == line_item_id:
            return item
    raise HTTPException(status_code=404, detail=f"Line item {line_item_id} not found")


# --- Endpoints ---

@app.get("/")
async def root():
    """Health check endpoint"""
    return {"message": "Iron City Fulfillment API is running", "status": "healthy"}


@app.get("/api/health")
async def health_check():
    """Detailed health check with configuration information"""
    settings = get_services().settings
    return {
        "status": "healthy",
        "environment": {
            "storage_backend": settings.storage_backend,
            "supabase_url": bool(settings.supabase_url),
            "location_filter": bool(settings.location_id),
            "trigger_secret_key": bool(os.environ.get('TRIGGER_SECRET_KEY'))
        },
        "endpoints": {
            "board": "/api/board",
            "picklist": "/api/picklist",
            "progress": "/api/progress",
            "hd_order_lines": "/api/hd/order-lines",
            "exclusions": "/api/hd/exclusions",
            "orders_needing_lines": "/api/hd/orders-needing-lines",
            "health": "/api/health"
        }
    }


@app.get("/api/board")
async def get_board():
    """Kanban board: every item, grouped into columns, with status counts"""
    services = get_services()
    result = await services.reconciliation.reconcile(
        services.settings.order_status_filter, ReconciliationMode.FULL
    )
    return {
        "columns": [column.model_dump(mode="json") for column in build_columns(result.items)],
        "counts": result.counts.model_dump(),
        "stats": result.stats.model_dump(),
    }


@app.get("/api/picklist")
async def get_picklist():
    """Legacy picklist: only orders with items nobody has progressed"""
    services = get_services()
    result = await services.reconciliation.reconcile(
        services.settings.order_status_filter, ReconciliationMode.FILTERING
    )
    return {
        "orders": [order.model_dump(mode="json") for order in result.orders],
        "stats": result.stats.model_dump(),
    }


@app.post("/api/progress")
async def apply_progress(request: TransitionRequest, key: Optional[str] = Query(None)):
    """Apply a progress transition to a line item (or its order, for To Dispatch)"""
    verify_key(key)
    item = await find_item(request.line_item_id)
    extra = TransitionExtra(**request.model_dump(exclude={"line_item_id", "target_status"}))

    result = await get_services().transitions.apply_transition(item, request.target_status, extra)
    return {"success": True, **result.model_dump(mode="json")}


@app.delete("/api/progress/{line_item_id}")
async def reset_progress(line_item_id: str, key: Optional[str] = Query(None)):
    """Remove a line item's progress record so it returns to To Pick"""
    verify_key(key)
    item = await find_item(line_item_id)
    await get_services().transitions.reset_progress(item)
    return {"success": True, "message": f"Progress reset for {item.sku or 'item'}"}


@app.post("/api/hd/order-lines")
async def upload_hd_order_lines(file: UploadFile = File(...), key: Optional[str] = Query(None)):
    """Import an HD order-line Excel export, skipping excluded lines"""
    verify_key(key)
    try:
        lines = parse_hd_order_lines(file.file)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"🚀 Importing {len(lines)} HD order lines from {file.filename}")
    stats = await get_services().hd_importer.import_order_lines(lines, file.filename)
    return {"success": stats.errors == 0, "stats": stats.model_dump()}


@app.get("/api/hd/exclusions")
async def list_exclusions():
    exclusions = await get_services().exclusions.list_exclusions()
    return {"exclusions": [e.model_dump(mode="json") for e in exclusions]}


@app.post("/api/hd/exclusions")
async def add_exclusion(request: ExclusionRequest, key: Optional[str] = Query(None)):
    verify_key(key)
    record = await get_services().exclusions.add_line_exclusion(
        request.hd_order_number, request.line_number, request.part_number, request.reason
    )
    return {"success": True, "exclusion": record.model_dump(mode="json")}


@app.delete("/api/hd/exclusions/{exclusion_id}")
async def remove_exclusion(exclusion_id: str, key: Optional[str] = Query(None)):
    verify_key(key)
    await get_services().exclusions.remove_exclusion(exclusion_id)
    return {"success": True}


@app.get("/api/hd/excluded-orders")
async def list_excluded_orders():
    orders = await get_services().exclusions.list_order_exclusions()
    return {"orders": [order.model_dump(mode="json") for order in orders]}


@app.post("/api/hd/excluded-orders")
async def add_excluded_order(request: OrderExclusionRequest, key: Optional[str] = Query(None)):
    verify_key(key)
    order = await get_services().exclusions.add_order_exclusion(
        request.hd_order_number, request.reason
    )
    return {"success": True, "order": order.model_dump(mode="json")}


@app.delete("/api/hd/excluded-orders/{exclusion_id}")
async def remove_excluded_order(exclusion_id: str, key: Optional[str] = Query(None)):
    verify_key(key)
    await get_services().exclusions.remove_order_exclusion(exclusion_id)
    return {"success": True}


@app.get("/api/hd/orders-needing-lines")
async def list_orders_needing_lines():
    """HD orders that still need a line-item upload"""
    orders = await get_services().hd_importer.list_orders_needing_line_items()
    return {"orders": [order.model_dump(mode="json") for order in orders]}


if __name__ == "__main__":
    # This allows running the API standalone for testing
    uvicorn.run(app, host="0.0.0.0", port=8001)
