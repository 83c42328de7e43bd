"""
Unit tests for the channel connectors and the workbook source.
"""

import base64
import io
from datetime import datetime, timezone

import pytest
from openpyxl import Workbook

from conftest import FakeResponse, make_session
from sales_sync.errors import (
    PaginationLoop,
    SourceFormatError,
    UpstreamAuthError,
    UpstreamError,
)
from sales_sync.extract import (
    AmazonConnector,
    FlipkartConnector,
    ShiprocketConnector,
    SyncWindow,
    VyaparWorkbookSource,
)

SHIPROCKET_URL = "https://apiv2.shiprocket.in"
FLIPKART_URL = "https://api.flipkart.net"
AMAZON_URL = "https://sellingpartnerapi-fe.amazon.com"
UTC = timezone.utc


def shiprocket_page(ids, next_url=None):
    return {
        "data": [{"id": order_id} for order_id in ids],
        "meta": {"pagination": {"links": {"next": next_url}}},
    }


class TestShiprocketConnector:
    """Pagination over meta.pagination.links.next."""

    def test_walks_all_pages_and_reapplies_filters(self, no_sleep):
        session = make_session(
            FakeResponse(200, shiprocket_page(range(50), f"{SHIPROCKET_URL}/v1/external/orders?page=2")),
            FakeResponse(200, shiprocket_page(range(50, 80))),
        )
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)
        window = SyncWindow(start=datetime(2026, 1, 7, tzinfo=UTC), end=datetime(2026, 2, 1, tzinfo=UTC))

        records = list(connector.iter_records(window))

        assert len(records) == 80
        first, second = session.request.call_args_list
        assert first.args == ("GET", f"{SHIPROCKET_URL}/v1/external/orders?updatedFrom=2026-01-07")
        assert second.args == ("GET", f"{SHIPROCKET_URL}/v1/external/orders?page=2&updatedFrom=2026-01-07")
        assert first.kwargs["headers"]["Authorization"] == "Bearer tok"
        no_sleep.assert_called_once_with(0.5)

    def test_backfill_uses_from_and_to(self, no_sleep):
        session = make_session(FakeResponse(200, shiprocket_page([1])))
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)
        window = SyncWindow(
            start=datetime(2025, 1, 1, tzinfo=UTC), end=datetime(2025, 1, 31, tzinfo=UTC), backfill=True
        )

        assert list(connector.iter_records(window)) == [{"id": 1}]
        url = session.request.call_args.args[1]
        assert url == f"{SHIPROCKET_URL}/v1/external/orders?from=2025-01-01&to=2025-01-31"
        no_sleep.assert_not_called()

    def test_repeated_cursor_is_a_loop(self, no_sleep):
        repeat = f"{SHIPROCKET_URL}/v1/external/orders?page=2"
        session = make_session(
            FakeResponse(200, shiprocket_page([1], repeat)),
            FakeResponse(200, shiprocket_page([2], repeat)),
        )
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)

        with pytest.raises(PaginationLoop) as exc_info:
            list(connector.iter_records(SyncWindow(start=datetime(2026, 1, 7, tzinfo=UTC))))

        assert exc_info.value.cursor == repeat
        assert session.request.call_count == 2

    def test_error_status_carries_truncated_body(self, no_sleep):
        session = make_session(FakeResponse(502, text="x" * 2000))
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)

        with pytest.raises(UpstreamError) as exc_info:
            list(connector.iter_records(SyncWindow(start=datetime(2026, 1, 7, tzinfo=UTC))))

        assert exc_info.value.status == 502
        assert exc_info.value.body.endswith("...[truncated]")
        assert len(exc_info.value.body) == 500 + len("...[truncated]")

    def test_unauthorized_is_an_auth_error(self, no_sleep):
        session = make_session(FakeResponse(401, text='{"message": "Token expired"}'))
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)

        with pytest.raises(UpstreamAuthError):
            list(connector.iter_records(SyncWindow(start=datetime(2026, 1, 7, tzinfo=UTC))))

    def test_non_json_body_is_an_upstream_error(self, no_sleep):
        session = make_session(FakeResponse(200, None, text="<html>maintenance</html>"))
        connector = ShiprocketConnector(session, "tok", SHIPROCKET_URL, sleep=no_sleep)

        with pytest.raises(UpstreamError, match="Invalid JSON body"):
            list(connector.iter_records(SyncWindow(start=datetime(2026, 1, 7, tzinfo=UTC))))


class TestAmazonConnector:
    def test_search_orders_pagination(self, no_sleep):
        session = make_session(
            FakeResponse(200, {"orders": [{"orderId": "A-1"}], "pagination": {"nextToken": "t1"}}),
            FakeResponse(200, {"orders": [{"orderId": "A-2"}], "pagination": {}}),
        )
        connector = AmazonConnector(
            session, "lwa-token", AMAZON_URL, marketplace_id="A21TJRUUN4KGV", sleep=no_sleep
        )
        window = SyncWindow(start=datetime(2026, 1, 2, 12, 0, tzinfo=UTC))

        records = list(connector.iter_records(window))

        assert [record["orderId"] for record in records] == ["A-1", "A-2"]
        first, second = session.request.call_args_list
        assert first.args == ("GET", f"{AMAZON_URL}/orders/2026-01-01/orders")
        assert first.kwargs["params"] == {
            "marketplaceIds": "A21TJRUUN4KGV",
            "lastUpdatedAfter": "2026-01-02T12:00:00Z",
            "includedData": "RECIPIENT,FULFILLMENT",
            "maxResultsPerPage": 100,
        }
        assert second.kwargs["params"]["paginationToken"] == "t1"
        assert first.kwargs["headers"]["x-amz-access-token"] == "lwa-token"
        assert "Authorization" not in first.kwargs["headers"]
        no_sleep.assert_not_called()


class TestFlipkartConnector:
    """POST the filter, then GET next_token pages while hasMore is true."""

    def test_sync_mode_runs_both_dispatch_filters(self, no_sleep):
        session = make_session(
            FakeResponse(200, {
                "shipments": [{"shipmentId": "S1"}],
                "hasMore": True,
                "nextPageUrl": "/sellers/v3/shipments/filter/?next_token=abc",
            }),
            FakeResponse(200, {"shipments": [{"shipmentId": "S2"}], "hasMore": False}),
            FakeResponse(200, {"shipments": [{"shipmentId": "S3"}], "hasMore": False}),
        )
        connector = FlipkartConnector(session, "tok", FLIPKART_URL, sleep=no_sleep)

        records = list(connector.iter_records(SyncWindow()))

        assert [record["shipmentId"] for record in records] == ["S1", "S2", "S3"]
        post_dispatch, next_page, pre_dispatch = session.request.call_args_list
        filter_url = f"{FLIPKART_URL}/sellers/v3/shipments/filter/"
        assert post_dispatch.args == ("POST", filter_url)
        assert post_dispatch.kwargs["json"] == {
            "filter": {"type": "postDispatch", "states": ["SHIPPED", "DELIVERED"]}
        }
        assert next_page.args == ("GET", filter_url)
        assert next_page.kwargs["params"] == {"next_token": "abc"}
        assert pre_dispatch.kwargs["json"]["filter"]["type"] == "preDispatch"
        assert pre_dispatch.kwargs["json"]["filter"]["states"] == [
            "APPROVED", "PACKING_IN_PROGRESS", "PACKED", "FORM_FAILED", "READY_TO_DISPATCH",
        ]
        no_sleep.assert_called_once_with(0.5)

    def test_cancelled_filter_body(self):
        connector = FlipkartConnector(make_session(), "tok", FLIPKART_URL, mode="cancelled")
        window = SyncWindow(
            start=datetime(2026, 1, 18, 12, 0, tzinfo=UTC), end=datetime(2026, 2, 1, 12, 0, tzinfo=UTC)
        )

        queries = connector.build_filters(window)

        assert len(queries) == 1
        assert queries[0].body == {
            "filter": {
                "type": "cancelled",
                "states": ["Cancelled"],
                "cancellationDate": {
                    "from": "2026-01-18T12:00:00.000Z",
                    "to": "2026-02-01T12:00:00.000Z",
                },
            }
        }

    def test_has_more_without_token_fails(self, no_sleep):
        session = make_session(
            FakeResponse(200, {"shipments": [], "hasMore": True, "nextPageUrl": "/sellers/v3/shipments/filter/"})
        )
        connector = FlipkartConnector(session, "tok", FLIPKART_URL, sleep=no_sleep)

        with pytest.raises(UpstreamError, match="next_token missing"):
            list(connector.iter_records(SyncWindow()))

    def test_repeated_next_token_is_a_loop(self, no_sleep):
        page = {"shipments": [], "hasMore": True, "nextPageUrl": "/sellers/v3/shipments/filter/?next_token=same"}
        session = make_session(FakeResponse(200, page), FakeResponse(200, page))
        connector = FlipkartConnector(session, "tok", FLIPKART_URL, mode="cancelled", sleep=no_sleep)
        window = SyncWindow(start=datetime(2026, 1, 18, tzinfo=UTC), end=datetime(2026, 2, 1, tzinfo=UTC))

        with pytest.raises(PaginationLoop):
            list(connector.iter_records(window))

    def test_shipment_details_lookup(self):
        session = make_session(FakeResponse(200, {"shipments": [{"shipmentId": "S1"}, {"shipmentId": "S2"}]}))
        connector = FlipkartConnector(session, "tok", FLIPKART_URL)

        details = connector.fetch_shipment_details(["S1", "S2"])

        assert len(details) == 2
        assert session.request.call_args.args == ("GET", f"{FLIPKART_URL}/sellers/v3/shipments/S1,S2")

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            FlipkartConnector(make_session(), "tok", FLIPKART_URL, mode="returns")


def workbook_base64(sheets):
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


SALE_REPORT_ROWS = [
    ["Sale Report"],
    ["Duration: 01/01/2026 to 31/01/2026"],
    ["Date", "Invoice No.", "Party Name", "Phone No.", "Transaction Type", "Total Amount"],
    ["05/01/2026", 101, "Asha Traders", 9876543210, "Sale", 1180],
]
SALE_ITEMS_ROWS = [
    ["Invoice No.", "Item code", "Quantity", "Amount", "GST"],
    [101, "SKU-1", 2, 1180, "180 (18%)"],
]


class TestVyaparWorkbookSource:
    def test_reads_both_sheets(self):
        encoded = workbook_base64({"Sale Report": SALE_REPORT_ROWS, "Sale Items": SALE_ITEMS_ROWS})
        source = VyaparWorkbookSource(encoded, "sales.xlsx")

        records = list(source.iter_records())

        assert len(records) == 1
        workbook = records[0]
        assert workbook["file_name"] == "sales.xlsx"
        assert workbook["sale_report"][0]["Invoice No."] == 101
        assert workbook["sale_report"][0]["Transaction Type"] == "Sale"
        assert workbook["sale_items"][0]["Item code"] == "SKU-1"
        assert workbook["sale_items"][0]["GST"] == "180 (18%)"

    def test_accepts_data_url_prefix(self):
        encoded = workbook_base64({"Sale Report": SALE_REPORT_ROWS, "Sale Items": SALE_ITEMS_ROWS})
        prefixed = (
            "data:application/vnd.openxmlformats-officedocument.spreadsheetml.sheet;base64," + encoded
        )

        workbook = VyaparWorkbookSource(prefixed).read()

        assert len(workbook["sale_items"]) == 1

    def test_missing_sheet(self):
        encoded = workbook_base64({"Sale Report": SALE_REPORT_ROWS})

        with pytest.raises(SourceFormatError, match="Sale Items"):
            VyaparWorkbookSource(encoded).read()

    def test_not_a_workbook(self):
        encoded = base64.b64encode(b"plain text, not a spreadsheet").decode("ascii")

        with pytest.raises(SourceFormatError):
            VyaparWorkbookSource(encoded).read()
