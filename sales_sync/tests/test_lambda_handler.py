"""
Tests for the Lambda trigger handlers.
"""

import base64
import io
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import openpyxl
import pytest

from conftest import InMemoryGateway
from sales_sync import lambda_handler
from sales_sync.credentials import RefreshReport
from sales_sync.errors import SyncError, SyncInProgress, UpstreamError
from sales_sync.models import PurgeResult, SyncResult


@pytest.fixture(autouse=True)
def configured():
    with patch.multiple(
        lambda_handler.Config,
        DATABASE_URL="postgresql://localhost/sales",
        DB_SECRET_ARN="",
        SHIPROCKET_EMAIL="ops@example.com",
        SHIPROCKET_PASSWORD="pw",
        FLIPKART_APP_ID="app",
        FLIPKART_APP_SECRET="secret",
        AMAZON_CLIENT_ID="cid",
        AMAZON_CLIENT_SECRET="csecret",
        AMAZON_REFRESH_TOKEN="refresh",
        CRON_SECRET="cron-secret",
        SYNC_LEASE_TTL_SECONDS=0,
    ):
        yield


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    with patch("sales_sync.wiring.build_session"), \
            patch("sales_sync.wiring.build_gateway", return_value=MagicMock()), \
            patch("sales_sync.wiring.build_credential_store"), \
            patch("sales_sync.wiring.build_orchestrator", return_value=orchestrator):
        yield orchestrator


def post(body=None, **extra):
    event = {"httpMethod": "POST", "headers": {}, "body": json.dumps(body) if body is not None else None}
    event.update(extra)
    return event


def body_of(response):
    return json.loads(response["body"])


def workbook_base64():
    workbook = openpyxl.Workbook()
    report = workbook.active
    report.title = "Sale Report"
    report.append(["Sale Report"])
    report.append(["Duration: This Month"])
    report.append(["Date", "Invoice No.", "Party Name", "Phone No.", "Transaction Type", "Total Amount"])
    report.append(["05/01/2026", 101, "Asha Traders", 9876543210, "Sale", 1180])
    report.append(["06/01/2026", 102, "Mehta Stores", None, "Sale", 590])
    items = workbook.create_sheet("Sale Items")
    items.append(["Invoice No.", "Item code", "Quantity", "Amount", "GST"])
    items.append([101, "SKU-1", 2, 1180, "180 (18%)"])
    items.append([102, "SKU-2", 1, 590, "90 (18%)"])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class TestRouting:
    def test_options_preflight(self):
        response = lambda_handler.amazon_handler({"httpMethod": "OPTIONS"}, None)

        assert response["statusCode"] == 200
        assert response["body"] == "ok"
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"

    def test_method_not_allowed(self):
        response = lambda_handler.shiprocket_handler({"httpMethod": "GET"}, None)

        assert response["statusCode"] == 405
        assert body_of(response) == {"error": "Method not allowed"}

    def test_http_api_method(self, orchestrator):
        orchestrator.run.return_value = SyncResult("amazon", message="No Amazon orders returned")
        event = {"requestContext": {"http": {"method": "POST"}}}

        response = lambda_handler.amazon_handler(event, None)

        assert response["statusCode"] == 200
        assert body_of(response) == {"message": "No Amazon orders returned"}

    def test_missing_method_is_rejected(self, orchestrator):
        response = lambda_handler.amazon_handler({"body": "{}"}, None)

        assert response["statusCode"] == 405
        orchestrator.run.assert_not_called()


class TestChannelHandlers:
    def test_shiprocket_success(self, orchestrator):
        orchestrator.run.return_value = SyncResult("shiprocket", orders_processed=80, items_processed=120)

        response = lambda_handler.shiprocket_handler(post(), None)

        assert response["statusCode"] == 200
        assert body_of(response) == {"orders_processed": 80, "items_processed": 120}
        assert response["headers"]["Content-Type"] == "application/json"

    @patch("sales_sync.wiring.shiprocket_job")
    def test_shiprocket_backfill_range(self, mock_job, orchestrator):
        orchestrator.run.return_value = SyncResult("shiprocket", orders_processed=1, items_processed=1)

        lambda_handler.shiprocket_handler(post(queryStringParameters={"from": "2025-01-01", "to": "2025-01-31"}), None)

        kwargs = mock_job.call_args.kwargs
        assert kwargs["backfill_from"] == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert kwargs["backfill_to"] == datetime(2025, 1, 31, tzinfo=timezone.utc)

    def test_shiprocket_bad_date(self, orchestrator):
        response = lambda_handler.shiprocket_handler(post(queryStringParameters={"from": "01/01/2025"}), None)

        assert response["statusCode"] == 400
        assert "YYYY-MM-DD" in body_of(response)["error"]
        orchestrator.run.assert_not_called()

    def test_sync_error(self, orchestrator):
        cause = UpstreamError("amazon", 503, "Service Unavailable")
        orchestrator.run.side_effect = SyncError("amazon", "connecting", cause)

        response = lambda_handler.amazon_handler(post(), None)

        assert response["statusCode"] == 500
        assert body_of(response) == {"error": "amazon API responded with 503: Service Unavailable"}

    def test_sync_in_progress(self, orchestrator):
        orchestrator.run.side_effect = SyncInProgress("flipkart")

        response = lambda_handler.flipkart_handler(post(), None)

        assert response["statusCode"] == 409

    def test_missing_configuration(self, orchestrator):
        with patch.object(lambda_handler.Config, "AMAZON_REFRESH_TOKEN", ""):
            response = lambda_handler.amazon_handler(post(), None)

        assert response["statusCode"] == 500
        assert body_of(response) == {"error": "Missing required environment variables: AMAZON_REFRESH_TOKEN"}
        orchestrator.run.assert_not_called()

    def test_unexpected_error(self, orchestrator):
        orchestrator.run.side_effect = RuntimeError("boom")

        response = lambda_handler.amazon_handler(post(), None)

        assert response["statusCode"] == 500
        assert body_of(response) == {"error": "boom"}

    def test_flipkart_cleanup(self, orchestrator):
        orchestrator.run_cancellation_purge.return_value = PurgeResult()

        response = lambda_handler.flipkart_cleanup_handler(post(), None)

        assert body_of(response) == {
            "message": "No cancelled shipments found",
            "cancelled_shipments_found": 0,
            "deleted_orders": 0,
            "deleted_items": 0,
        }
        assert orchestrator.run_cancellation_purge.call_args.args[0] == "flipkart"


class TestGeoEnrichHandler:
    @patch("sales_sync.wiring.build_geo_enricher")
    def test_shipment_ids(self, mock_build, orchestrator):
        mock_build.return_value.run.return_value = {"shipment_ids_processed": 2, "rows_updated": 2}

        response = lambda_handler.flipkart_geo_enrich_handler(post({"shipmentIds": ["S1", "S2"]}), None)

        assert body_of(response) == {"shipment_ids_processed": 2, "rows_updated": 2}
        mock_build.return_value.run.assert_called_once_with(shipment_ids=["S1", "S2"], limit=500)

    @patch("sales_sync.wiring.build_geo_enricher")
    def test_invalid_json_falls_back_to_selection(self, mock_build, orchestrator):
        mock_build.return_value.run.return_value = {"message": "No shipments need geo enrichment"}

        response = lambda_handler.flipkart_geo_enrich_handler({"httpMethod": "POST", "body": "not json"}, None)

        assert response["statusCode"] == 200
        mock_build.return_value.run.assert_called_once_with(shipment_ids=None, limit=500)

    def test_shipment_ids_must_be_a_list(self, orchestrator):
        response = lambda_handler.flipkart_geo_enrich_handler(post({"shipmentIds": "S1"}), None)

        assert response["statusCode"] == 400


class TestVyaparHandler:
    def test_missing_file(self):
        response = lambda_handler.vyapar_handler(post({"file_name": "sales.xlsx"}), None)

        assert response["statusCode"] == 400
        assert body_of(response) == {"error": "Missing file_base64 in request body"}

    def test_invalid_json(self):
        response = lambda_handler.vyapar_handler({"httpMethod": "POST", "body": "{"}, None)

        assert response["statusCode"] == 400

    def test_import(self):
        gateway = InMemoryGateway()
        event = post({
            "file_name": "sales.xlsx",
            "mime_type": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "file_base64": workbook_base64(),
        })

        with patch("sales_sync.wiring.build_gateway", return_value=gateway):
            response = lambda_handler.vyapar_handler(event, None)

        assert response["statusCode"] == 200
        assert body_of(response) == {
            "message": "Vyapar file processed successfully",
            "file_name": "sales.xlsx",
            "sales_processed": 2,
            "items_processed": 2,
        }
        assert gateway.orders[("vyapar", "101")]["customer_phone"] == "9876543210"
        assert gateway.items[("vyapar", "101", "SKU-1")]["revenue"] == 1000.0
        assert "vyapar" in gateway.watermarks

    def test_not_a_workbook(self):
        event = post({"file_name": "notes.txt", "file_base64": base64.b64encode(b"hello").decode("ascii")})

        with patch("sales_sync.wiring.build_gateway", return_value=InMemoryGateway()):
            response = lambda_handler.vyapar_handler(event, None)

        assert response["statusCode"] == 500
        assert "error" in body_of(response)


class TestRefreshSecretsHandler:
    def test_unauthorized(self):
        response = lambda_handler.refresh_secrets_handler(post(), None)

        assert response["statusCode"] == 401
        assert body_of(response) == {"error": "Unauthorized"}

    def test_wrong_secret(self):
        response = lambda_handler.refresh_secrets_handler(post(headers={"X-Cron-Secret": "guess"}), None)

        assert response["statusCode"] == 401

    def test_refreshed(self, orchestrator):
        with patch("sales_sync.wiring.build_credential_store") as mock_store:
            mock_store.return_value.refresh_expiring.return_value = RefreshReport(refreshed=["shiprocket"])
            response = lambda_handler.refresh_secrets_handler(post(headers={"X-Cron-Secret": "cron-secret"}), None)

        assert response["statusCode"] == 200
        assert body_of(response) == {"refreshed": ["shiprocket"]}

    def test_partial_failure(self, orchestrator):
        report = RefreshReport(refreshed=["shiprocket"], failed={"flipkart": "flipkart auth API responded with 401"})
        with patch("sales_sync.wiring.build_credential_store") as mock_store:
            mock_store.return_value.refresh_expiring.return_value = report
            response = lambda_handler.refresh_secrets_handler(post(headers={"x-cron-secret": "cron-secret"}), None)

        assert response["statusCode"] == 500
        assert body_of(response) == {
            "error": "Token refresh failed for: flipkart",
            "refreshed": ["shiprocket"],
            "failed": {"flipkart": "flipkart auth API responded with 401"},
        }
