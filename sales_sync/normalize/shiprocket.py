"""
Shiprocket order records to canonical orders and items.
"""

from typing import Any, Dict, Iterable, List, Optional

from sales_sync.models import NormalizedOrder, Order, OrderItem
from sales_sync.normalize.parsing import (
    clean_text,
    parse_amount,
    parse_integer,
    parse_timestamp,
    round2,
)

CHANNEL = "shiprocket"
PRICE_BASES = ("unit", "line")


def get_note_attribute(attributes: Optional[Iterable[Dict[str, Any]]], key: str) -> Optional[str]:
    """Case-insensitive lookup in Shopify-style note attributes."""
    for attribute in attributes or []:
        name = attribute.get("name")
        if isinstance(name, str) and name.lower() == key.lower():
            return attribute.get("value")
    return None


def _discounts(others: Dict[str, Any]):
    codes = others.get("discount_codes") or []
    joined = ", ".join(str(code.get("code")) for code in codes if code.get("code"))
    total = sum(parse_amount(code.get("amount")) for code in codes)
    return joined or None, total


def normalize_item(
    order_id: str,
    product: Dict[str, Any],
    order_date: Optional[str],
    price_basis: str = "unit",
) -> Optional[OrderItem]:
    sku = clean_text(product.get("channel_sku"))
    if not sku:
        return None

    quantity = parse_integer(product.get("quantity"))
    selling_price = parse_amount(product.get("mrp")) - parse_amount(product.get("discount_including_tax"))
    revenue = selling_price
    if price_basis == "line":
        revenue = selling_price * (quantity or 0)

    return OrderItem(
        channel=CHANNEL,
        order_id=order_id,
        item_key=sku,
        sku=sku,
        quantity=quantity,
        unit_price=round2(selling_price),
        revenue=round2(revenue),
        order_date=order_date,
    )


def normalize_order(record: Dict[str, Any], price_basis: str = "unit") -> Optional[NormalizedOrder]:
    """
    Map one Shiprocket order to a canonical order with its items.

    Args:
        record: Raw order from GET /v1/external/orders
        price_basis: "unit" stores mrp - discount per line as revenue,
            "line" multiplies it by the quantity

    Returns:
        NormalizedOrder, or None when the record has no Shiprocket id
    """
    if price_basis not in PRICE_BASES:
        raise ValueError(f"Unsupported Shiprocket price basis: {price_basis}")
    if record.get("id") in (None, ""):
        return None

    order_id = str(record["id"])
    others = record.get("others") or {}
    notes = others.get("note_attributes")
    discount_code, total_discount = _discounts(others)
    shipment = (record.get("shipments") or [{}])[0] or {}
    order_date = parse_timestamp(record.get("created_at"))

    order = Order(
        channel=CHANNEL,
        order_id=order_id,
        external_order_id=clean_text(record.get("channel_order_id")),
        order_date=order_date,
        order_status=clean_text(record.get("status")),
        shipped_date=parse_timestamp(shipment.get("shipped_date")),
        delivery_date=parse_timestamp(shipment.get("delivered_date")),
        customer_name=clean_text(record.get("customer_name")),
        customer_email=clean_text(record.get("customer_email")),
        customer_phone=clean_text(record.get("customer_phone")),
        customer_address=clean_text(record.get("customer_address")),
        customer_city=clean_text(record.get("customer_city")),
        customer_state=clean_text(record.get("customer_state")),
        customer_pincode=clean_text(record.get("customer_pincode")),
        payment_method=clean_text(record.get("payment_method")),
        total_amount=parse_amount(record.get("total")),
        tax_amount=parse_amount(record.get("tax")),
        discount_code=discount_code,
        total_discount=total_discount,
        utm_source=get_note_attribute(notes, "utm_source"),
        utm_medium=get_note_attribute(notes, "utm_medium"),
        utm_campaign=get_note_attribute(notes, "utm_campaign"),
        source_updated_at=parse_timestamp(record.get("updated_at")),
    )

    items = []
    for product in record.get("products") or []:
        item = normalize_item(order_id, product, order_date, price_basis)
        if item is not None:
            items.append(item)
    return NormalizedOrder(order=order, items=tuple(items))


def normalize_orders(records: Iterable[Dict[str, Any]], price_basis: str = "unit") -> List[NormalizedOrder]:
    bundles = (normalize_order(record, price_basis) for record in records)
    return [bundle for bundle in bundles if bundle is not None]
