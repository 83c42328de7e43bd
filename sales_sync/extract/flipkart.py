"""
Flipkart Seller API shipment connector.

The first page of a filter is a POST of the filter object; later pages are
GETs carrying the next_token that Flipkart embeds in nextPageUrl, for as long
as hasMore is true.

Two modes share that contract:
    sync      - dispatched and pre-dispatch shipments, upserted by the sync run
    cancelled - shipments cancelled in the lookback window, used only to
                build the deletion set for the cancellation purge
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, TypedDict
from urllib.parse import parse_qs, urljoin, urlsplit

from sales_sync.errors import UpstreamError
from sales_sync.extract.base import ChannelConnector, ChannelQuery, Page, SyncWindow


class FlipkartOrderItem(TypedDict, total=False):
    orderItemId: Optional[str]
    orderId: Optional[str]
    orderDate: Optional[str]
    paymentType: Optional[str]
    status: Optional[str]
    quantity: Optional[int]
    sku: Optional[str]
    priceComponents: Dict[str, Any]


class FlipkartShipmentRecord(TypedDict, total=False):
    shipmentId: Optional[str]
    updatedAt: Optional[str]
    orderItems: List[FlipkartOrderItem]


class FlipkartShipmentDetails(TypedDict, total=False):
    shipmentId: Optional[str]
    orderId: Optional[str]
    deliveryAddress: Dict[str, Optional[str]]


DISPATCH_FILTERS = (
    ("postDispatch", ("SHIPPED", "DELIVERED")),
    (
        "preDispatch",
        ("APPROVED", "PACKING_IN_PROGRESS", "PACKED", "FORM_FAILED", "READY_TO_DISPATCH"),
    ),
)


def _isoformat_ms(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class FlipkartConnector(ChannelConnector):
    channel = "flipkart"
    default_page_delay_seconds = 0.5
    FILTER_PATH = "/sellers/v3/shipments/filter/"
    DETAILS_PATH = "/sellers/v3/shipments/"
    MODES = ("sync", "cancelled")

    def __init__(self, *args: Any, mode: str = "sync", **kwargs: Any):
        super().__init__(*args, **kwargs)
        if mode not in self.MODES:
            raise ValueError(f"Unsupported Flipkart connector mode: {mode}")
        self.mode = mode

    def build_filter(self, window: SyncWindow) -> ChannelQuery:
        if self.mode != "cancelled":
            return self.build_filters(window)[0]
        if window.start is None or window.end is None:
            raise ValueError("The cancellation feed needs a bounded window")
        return ChannelQuery(
            label="cancelled",
            body={
                "filter": {
                    "type": "cancelled",
                    "states": ["Cancelled"],
                    "cancellationDate": {
                        "from": _isoformat_ms(window.start),
                        "to": _isoformat_ms(window.end),
                    },
                }
            },
        )

    def build_filters(self, window: SyncWindow) -> List[ChannelQuery]:
        if self.mode == "cancelled":
            return [self.build_filter(window)]
        return [
            ChannelQuery(
                label=filter_type,
                body={"filter": {"type": filter_type, "states": list(states)}},
            )
            for filter_type, states in DISPATCH_FILTERS
        ]

    def fetch_page(self, query: ChannelQuery, cursor: Optional[str]) -> Page:
        url = urljoin(self.base_url + "/", self.FILTER_PATH.lstrip("/"))
        if cursor is None:
            payload = self._request_json(
                "POST", url, json=query.body, headers={"Content-Type": "application/json"}
            )
        else:
            payload = self._request_json("GET", url, params={"next_token": cursor})

        records = payload.get("shipments") or []
        next_cursor = None
        if payload.get("hasMore"):
            next_cursor = self._next_token(payload.get("nextPageUrl"))
        return Page(records=list(records), next_cursor=next_cursor)

    def _next_token(self, next_page_url: Optional[str]) -> str:
        if not next_page_url:
            raise UpstreamError(self.channel, 200, "hasMore is true but nextPageUrl is missing")
        query = parse_qs(urlsplit(urljoin(self.base_url + "/", next_page_url)).query)
        tokens = query.get("next_token")
        if not tokens or not tokens[0]:
            raise UpstreamError(
                self.channel, 200, f"Pagination requested but next_token missing: {next_page_url}"
            )
        return tokens[0]

    def fetch_shipment_details(self, shipment_ids: Sequence[str]) -> List[FlipkartShipmentDetails]:
        """
        Look up delivery details for up to one batch of shipments.

        Args:
            shipment_ids: Shipment ids, joined into the path as a comma list

        Returns:
            The "shipments" array of the details response
        """
        if not shipment_ids:
            return []
        url = f"{self.base_url}{self.DETAILS_PATH}{','.join(shipment_ids)}"
        payload = self._request_json("GET", url)
        return list(payload.get("shipments") or [])
