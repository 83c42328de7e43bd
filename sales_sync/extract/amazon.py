"""
Amazon SP-API order connector (Orders API v2026-01-01, searchOrders).

Orders updated after the window start are requested with recipient and
fulfilment data included; pagination.nextToken is the cursor.
"""

from typing import Any, Dict, List, Optional, TypedDict

from sales_sync.extract.base import ChannelConnector, ChannelQuery, Page, SyncWindow


class AmazonMoney(TypedDict, total=False):
    amount: Optional[Any]
    currencyCode: Optional[str]


class AmazonOrderItem(TypedDict, total=False):
    orderItemId: Optional[str]
    quantityOrdered: Optional[int]
    product: Dict[str, Any]


class AmazonOrderRecord(TypedDict, total=False):
    orderId: str
    createdTime: Optional[str]
    lastUpdatedTime: Optional[str]
    fulfillment: Dict[str, Any]
    recipient: Dict[str, Any]
    orderItems: List[AmazonOrderItem]


class AmazonConnector(ChannelConnector):
    channel = "amazon"
    ORDERS_PATH = "/orders/2026-01-01/orders"
    PAGE_SIZE = 100
    INCLUDED_DATA = ("RECIPIENT", "FULFILLMENT")

    def __init__(self, *args: Any, marketplace_id: str, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.marketplace_id = marketplace_id

    def auth_headers(self) -> Dict[str, str]:
        return {"x-amz-access-token": self.token}

    def build_filter(self, window: SyncWindow) -> ChannelQuery:
        if window.start is None:
            raise ValueError("Amazon sync needs a lastUpdatedAfter window start")
        return ChannelQuery(
            label="lastUpdatedAfter",
            params={
                "marketplaceIds": self.marketplace_id,
                "lastUpdatedAfter": window.start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "includedData": ",".join(self.INCLUDED_DATA),
                "maxResultsPerPage": self.PAGE_SIZE,
            },
        )

    def fetch_page(self, query: ChannelQuery, cursor: Optional[str]) -> Page:
        params = dict(query.params)
        if cursor:
            params["paginationToken"] = cursor
        payload = self._request_json(
            "GET", f"{self.base_url}{self.ORDERS_PATH}", params=params
        )

        # Some SP-API gateways still wrap bodies in "payload"
        body = payload.get("payload") if isinstance(payload.get("payload"), dict) else payload
        records = body.get("orders") or []
        next_token = (body.get("pagination") or {}).get("nextToken")
        return Page(records=list(records), next_cursor=next_token or None)
