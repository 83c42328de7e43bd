"""
Builds gateways, credential stores, connectors and sync jobs from Config.

The Lambda handlers only talk to this module, so tests can patch one
factory instead of the environment.
"""

from datetime import datetime, timedelta
from typing import Optional

import boto3
import requests

from sales_sync.config import Config
from sales_sync.credentials import (
    AmazonAuthenticator,
    CredentialStore,
    FlipkartAuthenticator,
    ShiprocketAuthenticator,
    utc_now,
)
from sales_sync.enrich import GeoEnricher, GeoEnrichTrigger
from sales_sync.extract import (
    AmazonConnector,
    FlipkartConnector,
    ShiprocketConnector,
    SyncWindow,
    VyaparWorkbookSource,
)
from sales_sync.normalize import get_normalizer
from sales_sync.normalize.flipkart import GEO_FIELDS
from sales_sync.orchestrator import SyncJob, SyncOrchestrator
from sales_sync.store import PostgresGateway

USER_AGENT = "sales-sync/1.0"


def build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def build_gateway() -> PostgresGateway:
    return PostgresGateway()


def build_credential_store(gateway, session: requests.Session) -> CredentialStore:
    authenticators = {
        "shiprocket": ShiprocketAuthenticator(
            Config.SHIPROCKET_EMAIL, Config.SHIPROCKET_PASSWORD, Config.SHIPROCKET_API_URL
        ),
        "flipkart": FlipkartAuthenticator(
            Config.FLIPKART_APP_ID, Config.FLIPKART_APP_SECRET, Config.FLIPKART_API_URL
        ),
        "amazon": AmazonAuthenticator(
            Config.AMAZON_CLIENT_ID,
            Config.AMAZON_CLIENT_SECRET,
            Config.AMAZON_REFRESH_TOKEN,
            Config.AMAZON_AUTH_URL,
        ),
    }
    return CredentialStore(
        gateway,
        authenticators,
        session,
        refresh_margin=timedelta(hours=Config.CREDENTIAL_REFRESH_MARGIN_HOURS),
        timeout=Config.HTTP_TIMEOUT_SECONDS,
    )


def build_orchestrator(gateway, credentials: Optional[CredentialStore] = None) -> SyncOrchestrator:
    return SyncOrchestrator(
        gateway, credentials, lease_ttl_seconds=Config.SYNC_LEASE_TTL_SECONDS
    )


def _lambda_client():
    return boto3.client("lambda", region_name=Config.AWS_REGION)


def shiprocket_job(
    session: requests.Session,
    now: Optional[datetime] = None,
    backfill_from: Optional[datetime] = None,
    backfill_to: Optional[datetime] = None,
) -> SyncJob:
    now = now or utc_now()
    if backfill_from or backfill_to:
        window = SyncWindow(start=backfill_from, end=backfill_to, backfill=True)
    else:
        window = SyncWindow(start=now - timedelta(days=Config.SHIPROCKET_LOOKBACK_DAYS), end=now)

    return SyncJob(
        channel="shiprocket",
        source_factory=lambda token: ShiprocketConnector(
            session,
            token,
            Config.SHIPROCKET_API_URL,
            timeout=Config.HTTP_TIMEOUT_SECONDS,
            page_delay_seconds=Config.SHIPROCKET_PAGE_DELAY_SECONDS,
        ),
        normalizer=get_normalizer("shiprocket", shiprocket_price_basis=Config.SHIPROCKET_ITEM_PRICE_BASIS),
        window=window,
        credential_service="shiprocket",
        empty_message="No Shiprocket orders returned",
    )


def amazon_job(session: requests.Session, now: Optional[datetime] = None) -> SyncJob:
    now = now or utc_now()
    return SyncJob(
        channel="amazon",
        source_factory=lambda token: AmazonConnector(
            session,
            token,
            Config.AMAZON_API_URL,
            marketplace_id=Config.AMAZON_MARKETPLACE_ID,
            timeout=Config.HTTP_TIMEOUT_SECONDS,
            page_delay_seconds=Config.AMAZON_PAGE_DELAY_SECONDS,
        ),
        normalizer=get_normalizer("amazon", tax_divisor=Config.MARKETPLACE_TAX_DIVISOR),
        window=SyncWindow(start=now - timedelta(days=Config.AMAZON_LOOKBACK_DAYS), end=now),
        credential_service="amazon",
        empty_message="No Amazon orders returned",
    )


def flipkart_connector_factory(session: requests.Session, mode: str = "sync"):
    def factory(token: str) -> FlipkartConnector:
        return FlipkartConnector(
            session,
            token,
            Config.FLIPKART_API_URL,
            mode=mode,
            timeout=Config.HTTP_TIMEOUT_SECONDS,
            page_delay_seconds=Config.FLIPKART_PAGE_DELAY_SECONDS,
        )

    return factory


def flipkart_job(session: requests.Session, lambda_client_factory=_lambda_client) -> SyncJob:
    return SyncJob(
        channel="flipkart",
        source_factory=flipkart_connector_factory(session, "sync"),
        normalizer=get_normalizer("flipkart"),
        window=SyncWindow(),
        credential_service="flipkart",
        empty_message="No Flipkart shipments returned",
        preserve_columns=GEO_FIELDS,
        post_sync=GeoEnrichTrigger(Config.GEO_ENRICH_FUNCTION_NAME, lambda_client_factory),
    )


def flipkart_cancellation_window(now: Optional[datetime] = None) -> SyncWindow:
    now = now or utc_now()
    return SyncWindow(
        start=now - timedelta(days=Config.FLIPKART_CANCELLATION_LOOKBACK_DAYS), end=now
    )


def vyapar_job(file_base64: str, file_name: Optional[str] = None) -> SyncJob:
    source = VyaparWorkbookSource(file_base64, file_name)
    return SyncJob(
        channel="vyapar",
        source_factory=lambda token: source,
        normalizer=get_normalizer("vyapar"),
        window=SyncWindow(),
        empty_message='No sale records found in "Sale Report"',
        stamp_watermark_on_empty=True,
    )


def build_geo_enricher(gateway, credentials: CredentialStore, session: requests.Session) -> GeoEnricher:
    return GeoEnricher(gateway, credentials, flipkart_connector_factory(session, "sync"))
