"""
Canonical records shared by every channel.

Normalizers produce these, the reconciler groups them, the gateway writes
them. Field names match the store's column names.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Credential:
    """Bearer token for one service; expiry None means unknown."""

    service: str
    token: str
    expiry: Optional[datetime] = None


@dataclass(frozen=True)
class Order:
    channel: str
    order_id: str
    external_order_id: Optional[str] = None
    order_date: Optional[str] = None
    order_status: Optional[str] = None
    shipped_date: Optional[str] = None
    delivery_date: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    customer_city: Optional[str] = None
    customer_state: Optional[str] = None
    customer_pincode: Optional[str] = None
    payment_method: Optional[str] = None
    total_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    discount_code: Optional[str] = None
    total_discount: Optional[float] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    # Channel-reported modification time, used only to break ties in a batch
    source_updated_at: Optional[str] = None
    last_synced_at: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.channel, self.order_id)

    def stamped(self, synced_at: datetime) -> "Order":
        return replace(self, last_synced_at=synced_at.isoformat())

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OrderItem:
    channel: str
    order_id: str
    # SKU for Shiprocket/Vyapar, the channel's item id for Amazon/Flipkart
    item_key: str
    sku: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[float] = None
    revenue: Optional[float] = None
    item_status: Optional[str] = None
    order_date: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.channel, self.order_id, self.item_key)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NormalizedOrder:
    """One order together with the complete item list the channel reported for it."""

    order: Order
    items: Tuple[OrderItem, ...] = ()


@dataclass(frozen=True)
class SyncWatermark:
    channel: str
    updated: datetime


@dataclass
class SyncResult:
    """Outcome of one run, rendered as the trigger's JSON response."""

    channel: str
    orders_processed: int = 0
    items_processed: int = 0
    stale_items_deleted: int = 0
    message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        if self.message and not self.orders_processed:
            return {"message": self.message, **self.extra}
        body: Dict[str, Any] = {
            "orders_processed": self.orders_processed,
            "items_processed": self.items_processed,
        }
        if self.message:
            body["message"] = self.message
        body.update(self.extra)
        return body


@dataclass
class PurgeResult:
    cancelled_shipments_found: int = 0
    deleted_orders: int = 0
    deleted_items: int = 0

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "cancelled_shipments_found": self.cancelled_shipments_found,
            "deleted_orders": self.deleted_orders,
            "deleted_items": self.deleted_items,
        }
        if self.cancelled_shipments_found == 0:
            body = {"message": "No cancelled shipments found", **body}
        return body


ORDER_COLUMNS: List[str] = [f.name for f in fields(Order)]
ITEM_COLUMNS: List[str] = [f.name for f in fields(OrderItem)]
