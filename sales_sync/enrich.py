"""
Flipkart geo enrichment.

The shipment filter API does not return delivery addresses, so a second
pass looks shipments up in batches and fills city, state and pincode on
the stored orders. A Flipkart sync triggers it asynchronously for the
shipments it just wrote; it can also be run on its own to backfill orders
still missing geo fields.
"""

import json
from typing import Any, Callable, Dict, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from sales_sync.credentials import CredentialStore
from sales_sync.extract.flipkart import FlipkartConnector
from sales_sync.normalize.flipkart import extract_geo
from sales_sync.reconcile import WriteSet, chunked, distinct_ids
from sales_sync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
)

CHANNEL = "flipkart"
DETAILS_BATCH_SIZE = 25
DEFAULT_SELECTION_LIMIT = 500
MAX_SELECTION_LIMIT = 5000


def clamp_limit(limit: Any) -> int:
    """Selection limit from the request, defaulting to 500 and clamped to 1..5000."""
    if limit is None or isinstance(limit, bool):
        return DEFAULT_SELECTION_LIMIT
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_SELECTION_LIMIT
    return min(max(value, 1), MAX_SELECTION_LIMIT)


class GeoEnricher:
    """
    Fill geo columns of Flipkart orders from the shipment details API.

    Args:
        gateway: Persistence gateway
        credentials: Credential store holding the Flipkart token
        connector_factory: Builds a FlipkartConnector from a bearer token
    """

    def __init__(
        self,
        gateway,
        credentials: CredentialStore,
        connector_factory: Callable[[str], FlipkartConnector],
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.connector_factory = connector_factory

    def run(self, shipment_ids: Optional[Iterable[str]] = None, limit: Any = None) -> Dict[str, Any]:
        section = f"Geo enrichment - {CHANNEL}"
        log_section_start(section)

        ids = distinct_ids(shipment_ids or [])
        if not ids:
            ids = self.gateway.select_orders_missing_geo(CHANNEL, clamp_limit(limit))
        if not ids:
            log_section_complete(section, "nothing to enrich")
            return {"message": "No shipments need geo enrichment"}

        connector = self.connector_factory(self.credentials.get_valid(CHANNEL))
        rows_updated = 0
        batches = chunked(ids, DETAILS_BATCH_SIZE)
        for number, batch in enumerate(batches, start=1):
            details = connector.fetch_shipment_details(batch)
            rows = {
                str(shipment["shipmentId"]): extract_geo(shipment)
                for shipment in details
                if shipment.get("shipmentId")
            }
            rows_updated += self.gateway.update_order_geo(CHANNEL, rows)
            log_progress(
                section,
                f"Batch {number}/{len(batches)} done",
                requested=len(batch),
                returned=len(details),
            )

        log_section_complete(section, f"{rows_updated} rows updated")
        return {"shipment_ids_processed": len(ids), "rows_updated": rows_updated}


class GeoEnrichTrigger:
    """
    Post-sync hook that invokes the geo enrichment Lambda asynchronously.

    Failures are reported in the sync response, never raised.
    """

    def __init__(self, function_name: str, lambda_client_factory: Callable[[], Any]):
        self.function_name = function_name
        self.lambda_client_factory = lambda_client_factory

    def __call__(self, write_set: WriteSet) -> Dict[str, Any]:
        shipment_ids = [order.order_id for order in write_set.orders]
        if not self.function_name:
            error = "GEO_ENRICH_FUNCTION_NAME is not configured"
            log_error(f"Geo enrichment - {CHANNEL}", error)
            return {"geo_enrich_triggered": False, "geo_enrich_error": error}

        # Shaped like an API Gateway event so the handler treats it as a POST
        event = {"httpMethod": "POST", "body": json.dumps({"shipmentIds": shipment_ids})}
        try:
            response = self.lambda_client_factory().invoke(
                FunctionName=self.function_name,
                InvocationType="Event",
                Payload=json.dumps(event).encode("utf-8"),
            )
        except (BotoCoreError, ClientError) as e:
            log_error(f"Geo enrichment - {CHANNEL}", f"Trigger failed: {e}")
            return {"geo_enrich_triggered": False, "geo_enrich_error": str(e)}

        status = response.get("StatusCode")
        if status != 202:
            error = f"Async invoke returned status {status}"
            log_error(f"Geo enrichment - {CHANNEL}", error)
            return {"geo_enrich_triggered": False, "geo_enrich_error": error}

        log_progress(f"Geo enrichment - {CHANNEL}", "Triggered", shipments=len(shipment_ids))
        return {"geo_enrich_triggered": True, "geo_enrich_error": None}
