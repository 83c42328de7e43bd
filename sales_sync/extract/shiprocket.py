"""
Shiprocket order connector.

Walks GET /v1/external/orders following meta.pagination.links.next. The
next links Shiprocket returns drop some of the original filter params, so
the first request's params are re-applied to every next link that lacks them.
"""

from typing import Any, Dict, List, Optional, TypedDict
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sales_sync.extract.base import ChannelConnector, ChannelQuery, Page, SyncWindow


class ShiprocketProduct(TypedDict, total=False):
    channel_sku: Optional[str]
    quantity: Optional[int]
    mrp: Optional[Any]
    discount_including_tax: Optional[Any]


class ShiprocketShipment(TypedDict, total=False):
    shipped_date: Optional[str]
    delivered_date: Optional[str]


class ShiprocketOrderRecord(TypedDict, total=False):
    id: int
    channel_order_id: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    status: Optional[str]
    payment_method: Optional[str]
    total: Optional[Any]
    tax: Optional[Any]
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    customer_address: Optional[str]
    customer_city: Optional[str]
    customer_state: Optional[str]
    customer_pincode: Optional[str]
    products: List[ShiprocketProduct]
    shipments: List[ShiprocketShipment]
    others: Dict[str, Any]


def apply_missing_params(url: str, params: Dict[str, Any]) -> str:
    """
    Add each param to the URL's query string unless the URL already has it.

    Args:
        url: Absolute URL, possibly with a query string
        params: Params that must be present

    Returns:
        The URL with the missing params appended
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    present = {key for key, _ in query}
    query.extend((key, str(value)) for key, value in params.items() if key not in present)
    return urlunsplit(parts._replace(query=urlencode(query)))


class ShiprocketConnector(ChannelConnector):
    channel = "shiprocket"
    default_page_delay_seconds = 0.5
    ORDERS_PATH = "/v1/external/orders"

    def build_filter(self, window: SyncWindow) -> ChannelQuery:
        if window.backfill:
            params = {}
            if window.start:
                params["from"] = window.start.strftime("%Y-%m-%d")
            if window.end:
                params["to"] = window.end.strftime("%Y-%m-%d")
            return ChannelQuery(label="backfill", params=params)

        if window.start is None:
            raise ValueError("Shiprocket incremental sync needs a window start")
        return ChannelQuery(
            label="updated",
            params={"updatedFrom": window.start.strftime("%Y-%m-%d")},
        )

    def fetch_page(self, query: ChannelQuery, cursor: Optional[str]) -> Page:
        url = cursor or f"{self.base_url}{self.ORDERS_PATH}"
        url = apply_missing_params(url, query.params)
        payload = self._request_json("GET", url)

        records = payload.get("data") or []
        next_url = (
            ((payload.get("meta") or {}).get("pagination") or {}).get("links") or {}
        ).get("next")
        return Page(records=list(records), next_cursor=next_url or None)
