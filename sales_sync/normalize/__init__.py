"""Channel record normalizers. Pure functions, no I/O and no clock."""

from functools import partial
from typing import Any, Callable, Dict, Iterable, List

from sales_sync.models import NormalizedOrder
from sales_sync.normalize import amazon, flipkart, shiprocket, vyapar

Normalizer = Callable[[Iterable[Dict[str, Any]]], List[NormalizedOrder]]


def get_normalizer(
    channel: str,
    shiprocket_price_basis: str = "unit",
    tax_divisor: float = amazon.DEFAULT_TAX_DIVISOR,
) -> Normalizer:
    """
    Return the batch normalizer for a channel with its options bound.

    Raises:
        ValueError: For an unknown channel
    """
    normalizers: Dict[str, Normalizer] = {
        "shiprocket": partial(shiprocket.normalize_orders, price_basis=shiprocket_price_basis),
        "amazon": partial(amazon.normalize_orders, tax_divisor=tax_divisor),
        "flipkart": flipkart.normalize_shipments,
        "vyapar": vyapar.normalize_workbooks,
    }
    if channel not in normalizers:
        raise ValueError(f"No normalizer for channel: {channel}")
    return normalizers[channel]
