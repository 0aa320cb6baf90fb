import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration read from the environment"""

    storage_backend: Literal["supabase", "memory"] = "supabase"
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    # Only line items at this Shopify location (or with no location) are reconciled
    location_id: Optional[str] = None
    order_status_filter: str = "unfulfilled"
    trigger_secret_key: Optional[str] = None
    port: int = 8080


def get_settings() -> Settings:
    """Build settings from environment variables"""
    return Settings(
        storage_backend=os.getenv("FULFILLMENT_STORAGE_BACKEND", "supabase").strip().lower(),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        location_id=os.getenv("FULFILLMENT_LOCATION_ID") or None,
        order_status_filter=os.getenv("FULFILLMENT_ORDER_STATUS", "unfulfilled"),
        trigger_secret_key=os.getenv("TRIGGER_SECRET_KEY"),
        port=int(os.getenv("PORT", 8080)),
    )
