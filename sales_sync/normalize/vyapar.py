"""
Vyapar sales workbook rows to canonical orders and items.

An order is one sale invoice from "Sale Report"; its items come from
"Sale Items". Rows that fail validation are dropped, never fatal:

- report rows need Transaction Type "sale", a non-zero invoice number and a
  parseable date
- item rows need invoice, Item code, Quantity, Amount and GST, and must
  reference an invoice that survived the report filter

Several lines for the same (invoice, sku) are summed into one item.
"""

import numbers
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sales_sync.models import NormalizedOrder, Order, OrderItem
from sales_sync.normalize.parsing import (
    clean_text,
    parse_date,
    parse_integer,
    parse_leading_number,
    parse_optional_amount,
    round2,
)

CHANNEL = "vyapar"


def _phone(value: Any) -> Optional[str]:
    # Numeric cells come back as floats, e.g. 9876543210.0
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        if value != value:
            return None
        if float(value).is_integer():
            return str(int(value))
    return clean_text(value)


def parse_sale_row(row: Dict[str, Any]) -> Optional[Order]:
    if str(row.get("Transaction Type") or "").strip().lower() != "sale":
        return None

    invoice_no = parse_integer(row.get("Invoice No."))
    sale_date = parse_date(row.get("Date"))
    if not invoice_no or not sale_date:
        return None

    return Order(
        channel=CHANNEL,
        order_id=str(invoice_no),
        external_order_id=str(invoice_no),
        order_date=sale_date,
        customer_name=clean_text(row.get("Party Name")),
        customer_phone=_phone(row.get("Phone No.")),
        total_amount=parse_optional_amount(row.get("Total Amount")),
    )


def aggregate_items(
    rows: Iterable[Dict[str, Any]], valid_invoices: Dict[str, Order]
) -> Dict[str, List[OrderItem]]:
    """
    Validate and sum item lines per (invoice, sku).

    Args:
        rows: "Sale Items" rows
        valid_invoices: Orders that survived the report filter, by order_id

    Returns:
        Items grouped by order_id, in first-seen order
    """
    totals: Dict[Tuple[str, str], List[float]] = {}
    for row in rows:
        invoice_no = parse_integer(row.get("Invoice No."))
        sku = clean_text(row.get("Item code"))
        quantity = parse_integer(row.get("Quantity"))
        amount = parse_optional_amount(row.get("Amount"))
        gst = parse_leading_number(row.get("GST"))

        if not invoice_no or not sku or quantity is None or amount is None or gst is None:
            continue
        order_id = str(invoice_no)
        if order_id not in valid_invoices:
            continue

        entry = totals.setdefault((order_id, sku), [0, 0.0])
        entry[0] += quantity
        entry[1] += amount - gst

    grouped: Dict[str, List[OrderItem]] = {}
    for (order_id, sku), (quantity, net_price) in totals.items():
        grouped.setdefault(order_id, []).append(
            OrderItem(
                channel=CHANNEL,
                order_id=order_id,
                item_key=sku,
                sku=sku,
                quantity=quantity,
                unit_price=round2(net_price / quantity) if quantity else None,
                revenue=round2(net_price),
                order_date=valid_invoices[order_id].order_date,
            )
        )
    return grouped


def normalize_workbook(workbook: Dict[str, Any]) -> List[NormalizedOrder]:
    orders: Dict[str, Order] = {}
    for row in workbook.get("sale_report") or []:
        order = parse_sale_row(row)
        if order is not None:
            # Later rows for the same invoice win
            orders[order.order_id] = order

    items = aggregate_items(workbook.get("sale_items") or [], orders)
    return [
        NormalizedOrder(order=order, items=tuple(items.get(order_id, ())))
        for order_id, order in orders.items()
    ]


def normalize_workbooks(records: Iterable[Dict[str, Any]]) -> List[NormalizedOrder]:
    bundles: List[NormalizedOrder] = []
    for workbook in records:
        bundles.extend(normalize_workbook(workbook))
    return bundles
