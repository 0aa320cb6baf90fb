"""
Wiring for the storage backend and the engines built on it.

Both the Streamlit pages and the FastAPI app get their engines from here so
they share one store per process.
"""

import logging
from typing import Optional

from constants.schemas import Order, OrderLineItem, StockRecord
from constants.settings import Settings, get_settings
from utils.exclusion_matcher import ExclusionManager, HDOrderLineImporter
from utils.memory_store import InMemoryStore
from utils.reconciliation import ReconciliationEngine
from utils.supabase_handler import SupabaseHandler
from utils.transition_engine import TransitionEngine

logger = logging.getLogger(__name__)


class FulfillmentServices:
    """The store plus every engine that uses it"""

    def __init__(self, store, settings: Settings):
        self.store = store
        self.settings = settings
        self.reconciliation = ReconciliationEngine(
            store, store, store, location_id=settings.location_id
        )
        self.transitions = TransitionEngine(store, store)
        self.hd_importer = HDOrderLineImporter(store, store)
        self.exclusions = ExclusionManager(store)


_services: Optional[FulfillmentServices] = None


def create_store(settings: Settings):
    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage backend")
        store = InMemoryStore()
        seed_demo_data(store)
        return store

    logger.info("Using Supabase storage backend")
    return SupabaseHandler(settings.supabase_url, settings.supabase_service_role_key)


def get_services(settings: Optional[Settings] = None) -> FulfillmentServices:
    """Return the process-wide services, creating them on first use"""
    global _services
    if _services is None:
        settings = settings or get_settings()
        _services = FulfillmentServices(create_store(settings), settings)
    return _services


def seed_demo_data(store: InMemoryStore) -> None:
    """Two small orders so the board has something to show without Supabase"""
    store.add_order(
        Order(
            id="1",
            external_id="5501001",
            order_number="#1001",
            customer_name="Dana Rider",
            customer_email="dana@example.com",
        ),
        [
            OrderLineItem(id="11", order_id="1", sku="A1", title="Chrome Mirror Set", quantity=4, price=89.0),
            OrderLineItem(id="12", order_id="1", sku="B2", title="Leather Saddlebag", quantity=1, price=249.0),
        ],
    )
    store.add_order(
        Order(
            id="2",
            external_id="5501002",
            order_number="#1002",
            customer_name="Sam Tourer",
            customer_email="sam@example.com",
        ),
        [
            OrderLineItem(id="21", order_id="2", sku="C3", title="Oil Filter", quantity=2, price=14.5),
            OrderLineItem(id="22", order_id="2", sku=None, title="Gift Wrap", quantity=1, price=5.0),
        ],
    )
    store.add_stock(
        StockRecord(part_number="A1", description="MIRROR SET CHROME", stock_quantity=3, bin_location="A-01", cost=52.0),
        StockRecord(part_number="C3", description="OIL FILTER", stock_quantity=12, bin_location="C-14", cost=6.2),
    )
    store.add_hd_order(
        "HD-7001", dealer_po_number="PO55", order_type="Stock", order_date="2024-03-01"
    )
    store.add_hd_order(
        "HD-7002", dealer_po_number="PO61", order_type="Special", order_date="2024-03-08"
    )
