"""
Reconciliation of one run's normalized records into a write-set.

Pure functions: no I/O, no clock. The orchestrator applies the result
through the persistence gateway.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sales_sync.models import NormalizedOrder, Order, OrderItem

OrderKey = Tuple[str, str]


@dataclass
class WriteSet:
    """
    Rows to upsert plus, per touched order, the item keys that must survive.

    item_keys_by_order has an entry for every order in ``orders``; an empty
    tuple means every stored item of that order is stale.
    """

    orders: List[Order] = field(default_factory=list)
    items: List[OrderItem] = field(default_factory=list)
    item_keys_by_order: Dict[OrderKey, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.orders


def _newer_or_equal(candidate: Optional[str], current: Optional[str]) -> bool:
    # Missing timestamps tie, and ties go to the later record
    if candidate is None or current is None:
        return True
    try:
        return datetime.fromisoformat(candidate) >= datetime.fromisoformat(current)
    except (TypeError, ValueError):
        return True


def dedupe_latest(bundles: Iterable[NormalizedOrder]) -> List[NormalizedOrder]:
    """
    Keep one bundle per order key.

    The bundle with the latest source_updated_at wins; when timestamps are
    equal or absent the bundle encountered last wins. Items travel with their
    order, so a superseded record's items are discarded with it. Output
    keeps the position of each key's first appearance.
    """
    winners: Dict[OrderKey, NormalizedOrder] = {}
    for bundle in bundles:
        key = bundle.order.key
        current = winners.get(key)
        if current is None or _newer_or_equal(
            bundle.order.source_updated_at, current.order.source_updated_at
        ):
            winners[key] = bundle
    return list(winners.values())


def build_write_set(bundles: Iterable[NormalizedOrder], synced_at: datetime) -> WriteSet:
    """
    Deduplicate a run's bundles and flatten them into rows.

    Args:
        bundles: Normalized orders with their items, in fetch order
        synced_at: Run timestamp stamped on every order as last_synced_at

    Returns:
        WriteSet ready for the gateway
    """
    write_set = WriteSet()
    for bundle in dedupe_latest(bundles):
        order = bundle.order.stamped(synced_at)
        items: Dict[str, OrderItem] = {}
        for item in bundle.items:
            items[item.item_key] = item

        write_set.orders.append(order)
        write_set.items.extend(items.values())
        write_set.item_keys_by_order[order.key] = tuple(items)
    return write_set


def distinct_ids(values: Iterable[Optional[str]]) -> List[str]:
    """Distinct, non-empty ids in first-seen order."""
    seen: Dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


def plan_cancellation_purge(shipment_ids: Iterable[Optional[str]]) -> List[str]:
    """
    Deletion set for the cancellation purge.

    The gateway deletes the items of these orders first, then the orders.
    """
    return distinct_ids(shipment_ids)


def chunked(values: Sequence, size: int) -> List[Sequence]:
    if size <= 0:
        raise ValueError("size must be positive")
    return [values[index:index + size] for index in range(0, len(values), size)]
