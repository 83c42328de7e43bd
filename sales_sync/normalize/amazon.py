"""
Amazon SP-API orders to canonical orders and items.

Revenue is reported net of GST using a flat divisor rather than the tax
breakdown; the divisor is configurable (MARKETPLACE_TAX_DIVISOR).
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

CHANNEL = "amazon"
DEFAULT_TAX_DIVISOR = 1.18


def net_of_tax(gross: Optional[float], divisor: float = DEFAULT_TAX_DIVISOR) -> Optional[float]:
    if gross is None:
        return None
    return round2(gross / divisor)


def normalize_item(
    order_id: str,
    item: Dict[str, Any],
    order_date: Optional[str],
    tax_divisor: float = DEFAULT_TAX_DIVISOR,
) -> Optional[OrderItem]:
    item_key = clean_text(item.get("orderItemId"))
    if not item_key:
        return None

    product = item.get("product") or {}
    quantity = parse_integer(item.get("quantityOrdered")) or 0
    unit_price = parse_optional_amount(
        ((product.get("price") or {}).get("unitPrice") or {}).get("amount")
    )
    gross = None if unit_price is None else unit_price * quantity

    return OrderItem(
        channel=CHANNEL,
        order_id=order_id,
        item_key=item_key,
        sku=clean_text(product.get("sellerSku")),
        quantity=quantity,
        unit_price=round2(unit_price),
        revenue=net_of_tax(gross, tax_divisor),
        order_date=order_date,
    )


def normalize_order(
    record: Dict[str, Any], tax_divisor: float = DEFAULT_TAX_DIVISOR
) -> Optional[NormalizedOrder]:
    order_id = clean_text(record.get("orderId"))
    if not order_id:
        return None

    address = (record.get("recipient") or {}).get("deliveryAddress") or {}
    order_date = parse_timestamp(record.get("createdTime"))
    order = Order(
        channel=CHANNEL,
        order_id=order_id,
        external_order_id=order_id,
        order_date=order_date,
        order_status=clean_text((record.get("fulfillment") or {}).get("fulfillmentStatus")),
        customer_city=clean_text(address.get("city")),
        customer_state=clean_text(address.get("stateOrRegion")),
        customer_pincode=clean_text(address.get("postalCode")),
        source_updated_at=parse_timestamp(record.get("lastUpdatedTime")),
    )

    items = []
    for raw_item in record.get("orderItems") or []:
        item = normalize_item(order_id, raw_item, order_date, tax_divisor)
        if item is not None:
            items.append(item)
    return NormalizedOrder(order=order, items=tuple(items))


def normalize_orders(
    records: Iterable[Dict[str, Any]], tax_divisor: float = DEFAULT_TAX_DIVISOR
) -> List[NormalizedOrder]:
    bundles = (normalize_order(record, tax_divisor) for record in records)
    return [bundle for bundle in bundles if bundle is not None]
