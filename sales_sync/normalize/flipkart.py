"""
Flipkart shipments to canonical orders and items.

A Flipkart "order" in the store is one shipment: order_id holds the
shipment id and external_order_id the marketplace order id of its first
item. Geo columns are left empty here and filled by the enrichment pass.
"""

from typing import Any, Dict, Iterable, List, Optional

from sales_sync.models import NormalizedOrder, Order, OrderItem
from sales_sync.normalize.parsing import (
    clean_text,
    parse_integer,
    parse_optional_amount,
    parse_timestamp,
    round2,
)

CHANNEL = "flipkart"
GEO_FIELDS = ("customer_city", "customer_state", "customer_pincode")


def normalize_item(shipment_id: str, item: Dict[str, Any]) -> Optional[OrderItem]:
    item_key = clean_text(item.get("orderItemId"))
    if not item_key:
        return None

    quantity = parse_integer(item.get("quantity"))
    total_price = round2(parse_optional_amount((item.get("priceComponents") or {}).get("totalPrice")))
    unit_price = None
    if total_price is not None and quantity:
        unit_price = round2(total_price / quantity)

    return OrderItem(
        channel=CHANNEL,
        order_id=shipment_id,
        item_key=item_key,
        sku=clean_text(item.get("sku")),
        quantity=quantity,
        unit_price=unit_price,
        revenue=total_price,
        item_status=clean_text(item.get("status")),
        order_date=parse_timestamp(item.get("orderDate")),
    )


def normalize_shipment(record: Dict[str, Any]) -> Optional[NormalizedOrder]:
    """
    Map one shipment to a canonical order.

    Returns:
        NormalizedOrder, or None when the shipment id or the first item's
        order id is missing
    """
    shipment_id = clean_text(record.get("shipmentId"))
    order_items = record.get("orderItems") or []
    first_item = order_items[0] if order_items else {}
    external_order_id = clean_text(first_item.get("orderId"))
    if not shipment_id or not external_order_id:
        return None

    order = Order(
        channel=CHANNEL,
        order_id=shipment_id,
        external_order_id=external_order_id,
        order_date=parse_timestamp(first_item.get("orderDate")),
        order_status=clean_text(first_item.get("status")),
        payment_method=clean_text(first_item.get("paymentType")),
        source_updated_at=parse_timestamp(record.get("updatedAt")),
    )

    items = []
    for raw_item in order_items:
        item = normalize_item(shipment_id, raw_item)
        if item is not None:
            items.append(item)
    return NormalizedOrder(order=order, items=tuple(items))


def normalize_shipments(records: Iterable[Dict[str, Any]]) -> List[NormalizedOrder]:
    bundles = (normalize_shipment(record) for record in records)
    return [bundle for bundle in bundles if bundle is not None]


def extract_geo(details: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Pull city/state/pincode out of a shipment details record."""
    address = details.get("deliveryAddress") or {}
    return {
        "customer_city": clean_text(address.get("city")),
        "customer_state": clean_text(address.get("state")),
        "customer_pincode": clean_text(address.get("pinCode") or address.get("pincode")),
    }
