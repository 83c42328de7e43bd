"""
AWS Lambda handlers for the sales sync triggers.

Each handler takes an API Gateway proxy event. OPTIONS answers the CORS
preflight, anything but POST is rejected, and every failure collapses to a
JSON {"error": message} body; stack traces only go to the logs.
"""

import base64
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sales_sync import wiring
from sales_sync.config import Config
from sales_sync.enrich import clamp_limit
from sales_sync.errors import SalesSyncError, SyncError, SyncInProgress
from sales_sync.utils.logging_utils import log_error, log_section_complete, log_section_start

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-cron-secret",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}
CRON_SECRET_HEADER = "x-cron-secret"


class BadRequest(Exception):
    """The trigger request itself is malformed (HTTP 400)."""


def _response(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json", **CORS_HEADERS},
        "body": json.dumps(body, default=str),
    }


def _method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod") or (
        (event.get("requestContext") or {}).get("http") or {}
    ).get("method")
    return (method or "").upper()


def _headers(event: Dict[str, Any]) -> Dict[str, str]:
    return {str(key).lower(): value for key, value in (event.get("headers") or {}).items()}


def _json_body(event: Dict[str, Any], strict: bool = True) -> Dict[str, Any]:
    raw = event.get("body")
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        body = json.loads(raw)
    except ValueError:
        if strict:
            raise BadRequest("Request body must be valid JSON")
        return {}
    if not isinstance(body, dict):
        if strict:
            raise BadRequest("Request body must be a JSON object")
        return {}
    return body


def _parse_day(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise BadRequest(f"'{name}' must be a date in YYYY-MM-DD format")


def _handle(name: str, event: Dict[str, Any], action: Callable[[], Any]) -> Dict[str, Any]:
    """
    Run a trigger action and render its outcome as a proxy response.

    The action returns a JSON body, or a (status, body) tuple for a non-200
    outcome it handled itself.
    """
    method = _method(event)
    if method == "OPTIONS":
        return {"statusCode": 200, "headers": dict(CORS_HEADERS), "body": "ok"}
    if method != "POST":
        return _response(405, {"error": "Method not allowed"})

    log_section_start(name)
    try:
        body = action()
    except BadRequest as e:
        log_error(name, e)
        return _response(400, {"error": str(e)})
    except SyncInProgress as e:
        log_error(name, e)
        return _response(409, {"error": str(e)})
    except SyncError as e:
        # Already logged with stage and counts by the orchestrator
        return _response(500, {"error": str(e)})
    except SalesSyncError as e:
        log_error(name, e)
        return _response(500, {"error": str(e)})
    except Exception as e:
        log_error(name, f"Unexpected {type(e).__name__}: {e}")
        return _response(500, {"error": str(e)})

    status = 200
    if isinstance(body, tuple):
        status, body = body
    log_section_complete(name)
    return _response(status, body)


def _run_channel_job(channel: str, build_job: Callable[[Any], Any]) -> Dict[str, Any]:
    Config.require_channel(channel)
    session = wiring.build_session()
    with wiring.build_gateway() as gateway:
        credentials = wiring.build_credential_store(gateway, session)
        result = wiring.build_orchestrator(gateway, credentials).run(build_job(session))
    return result.to_response()


def shiprocket_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Incremental Shiprocket sync, or a backfill when ?from= and/or ?to= are given.

    Returns:
        200 {orders_processed, items_processed} or {message}
    """

    def action():
        params = event.get("queryStringParameters") or {}
        backfill_from = _parse_day(params.get("from"), "from")
        backfill_to = _parse_day(params.get("to"), "to")
        return _run_channel_job(
            "shiprocket",
            lambda session: wiring.shiprocket_job(
                session, backfill_from=backfill_from, backfill_to=backfill_to
            ),
        )

    return _handle("Shiprocket Sync", event, action)


def amazon_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return _handle(
        "Amazon Sync", event, lambda: _run_channel_job("amazon", wiring.amazon_job)
    )


def flipkart_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Flipkart dispatch sync; triggers geo enrichment for the shipments written."""
    return _handle(
        "Flipkart Sync", event, lambda: _run_channel_job("flipkart", wiring.flipkart_job)
    )


def flipkart_cleanup_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Delete Flipkart orders cancelled in the last FLIPKART_CANCELLATION_LOOKBACK_DAYS.

    Returns:
        200 {cancelled_shipments_found, deleted_orders, deleted_items}
    """

    def action():
        Config.require_channel("flipkart")
        session = wiring.build_session()
        with wiring.build_gateway() as gateway:
            credentials = wiring.build_credential_store(gateway, session)
            result = wiring.build_orchestrator(gateway, credentials).run_cancellation_purge(
                "flipkart",
                wiring.flipkart_connector_factory(session, "cancelled"),
                wiring.flipkart_cancellation_window(),
            )
        return result.to_response()

    return _handle("Flipkart Cleanup", event, action)


def flipkart_geo_enrich_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Fill Flipkart geo columns.

    Body: {"shipmentIds": [...]} for specific shipments, or {"limit": n} to
    pick up to n orders still missing geo fields.
    """

    def action():
        body = _json_body(event, strict=False)
        shipment_ids = body.get("shipmentIds")
        if shipment_ids is not None and not isinstance(shipment_ids, list):
            raise BadRequest("'shipmentIds' must be a list")

        Config.require_channel("flipkart")
        session = wiring.build_session()
        with wiring.build_gateway() as gateway:
            credentials = wiring.build_credential_store(gateway, session)
            enricher = wiring.build_geo_enricher(gateway, credentials, session)
            return enricher.run(shipment_ids=shipment_ids, limit=clamp_limit(body.get("limit")))

    return _handle("Flipkart Geo Enrichment", event, action)


def vyapar_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Import an uploaded Vyapar sales workbook.

    Body: {"file_name", "mime_type", "file_base64"}.

    Returns:
        200 {message, file_name, sales_processed, items_processed}
    """

    def action():
        body = _json_body(event)
        file_base64 = body.get("file_base64")
        if not file_base64:
            raise BadRequest("Missing file_base64 in request body")
        file_name = body.get("file_name")

        Config.require_channel("vyapar")
        with wiring.build_gateway() as gateway:
            result = wiring.build_orchestrator(gateway).run(wiring.vyapar_job(file_base64, file_name))

        return {
            "message": result.message or "Vyapar file processed successfully",
            "file_name": file_name,
            "sales_processed": result.orders_processed,
            "items_processed": result.items_processed,
        }

    return _handle("Vyapar Import", event, action)


def refresh_secrets_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled refresh of channel tokens that are missing or close to expiry.

    The x-cron-secret header must match CRON_SECRET.

    Returns:
        200 {refreshed: [...]} or {message}; 500 when any service failed
    """
    method = _method(event)
    if method == "POST":
        provided = _headers(event).get(CRON_SECRET_HEADER) or ""
        if not Config.CRON_SECRET or not hmac.compare_digest(provided, Config.CRON_SECRET):
            return _response(401, {"error": "Unauthorized"})

    def action():
        Config.validate()
        session = wiring.build_session()
        with wiring.build_gateway() as gateway:
            report = wiring.build_credential_store(gateway, session).refresh_expiring()
        if report.failed:
            failed = ", ".join(sorted(report.failed))
            return 500, {"error": f"Token refresh failed for: {failed}", **report.to_response()}
        return report.to_response()

    return _handle("Secrets Refresh", event, action)
