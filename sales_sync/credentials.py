"""
Credential store for channel bearer tokens.

Tokens live in the store (private.api_keys), one row per service. They are
refreshed either by the scheduled refresh trigger or on demand when a run
finds its token missing or inside the refresh margin.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

import requests

from sales_sync.errors import ConfigurationMissing, CredentialMissing, UpstreamError
from sales_sync.models import Credential
from sales_sync.utils.logging_utils import log_error, log_progress, log_warning

ONE_DAY = timedelta(days=1)
SHIPROCKET_TOKEN_LIFETIME = timedelta(days=10)
AMAZON_DEFAULT_LIFETIME = timedelta(hours=1)

# Services the scheduled refresh keeps warm; Amazon tokens are minted per run
SCHEDULED_SERVICES = ("shiprocket", "flipkart")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _lifetime(expires_in, fallback: timedelta) -> timedelta:
    try:
        seconds = float(expires_in)
    except (TypeError, ValueError):
        return fallback
    if seconds != seconds or seconds <= 0 or seconds == float("inf"):
        return fallback
    return timedelta(seconds=seconds)


def _json_or_error(service: str, response: requests.Response) -> dict:
    if not 200 <= response.status_code < 300:
        raise UpstreamError(f"{service} auth", response.status_code, response.text)
    try:
        payload = response.json()
    except ValueError:
        raise UpstreamError(f"{service} auth", response.status_code, "Invalid JSON body")
    if not isinstance(payload, dict):
        raise UpstreamError(f"{service} auth", response.status_code, "Unexpected response format")
    return payload


class Authenticator:
    """Exchanges a service's long-lived secrets for a fresh bearer token."""

    service: str = ""

    def fetch(self, session: requests.Session, now: datetime, timeout: float) -> Credential:
        raise NotImplementedError


class ShiprocketAuthenticator(Authenticator):
    service = "shiprocket"
    LOGIN_PATH = "/v1/external/auth/login"

    def __init__(self, email: str, password: str, api_url: str):
        self.email = email
        self.password = password
        self.api_url = api_url.rstrip("/")

    def fetch(self, session: requests.Session, now: datetime, timeout: float) -> Credential:
        if not self.email or not self.password:
            raise ConfigurationMissing(["SHIPROCKET_EMAIL", "SHIPROCKET_PASSWORD"])

        response = session.post(
            f"{self.api_url}{self.LOGIN_PATH}",
            json={"email": self.email, "password": self.password},
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        payload = _json_or_error(self.service, response)
        token = payload.get("token")
        if not token:
            raise UpstreamError("shiprocket auth", response.status_code, "Auth response missing token")
        # The login response carries no lifetime
        return Credential(self.service, token, now + SHIPROCKET_TOKEN_LIFETIME)


class FlipkartAuthenticator(Authenticator):
    service = "flipkart"
    TOKEN_PATH = "/oauth-service/oauth/token"

    def __init__(self, app_id: str, app_secret: str, api_url: str):
        self.app_id = app_id
        self.app_secret = app_secret
        self.api_url = api_url.rstrip("/")

    def fetch(self, session: requests.Session, now: datetime, timeout: float) -> Credential:
        if not self.app_id or not self.app_secret:
            raise ConfigurationMissing(["FLIPKART_APP_ID", "FLIPKART_APP_SECRET"])

        response = session.get(
            f"{self.api_url}{self.TOKEN_PATH}",
            params={"grant_type": "client_credentials", "scope": "Seller_Api"},
            auth=(self.app_id, self.app_secret),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        payload = _json_or_error(self.service, response)
        token = payload.get("access_token") or payload.get("token")
        if not token:
            raise UpstreamError("flipkart auth", response.status_code, "Auth response missing access token")
        return Credential(self.service, token, now + _lifetime(payload.get("expires_in"), ONE_DAY))


class AmazonAuthenticator(Authenticator):
    """Login with Amazon refresh-token grant for the Selling Partner API."""

    service = "amazon"

    def __init__(self, client_id: str, client_secret: str, refresh_token: str, auth_url: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.auth_url = auth_url

    def fetch(self, session: requests.Session, now: datetime, timeout: float) -> Credential:
        missing = [
            name
            for name, value in (
                ("AMAZON_CLIENT_ID", self.client_id),
                ("AMAZON_CLIENT_SECRET", self.client_secret),
                ("AMAZON_REFRESH_TOKEN", self.refresh_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationMissing(missing)

        response = session.post(
            self.auth_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=timeout,
        )
        payload = _json_or_error(self.service, response)
        token = payload.get("access_token")
        if not token:
            raise UpstreamError("amazon auth", response.status_code, "Auth response missing access token")
        return Credential(
            self.service, token, now + _lifetime(payload.get("expires_in"), AMAZON_DEFAULT_LIFETIME)
        )


@dataclass
class RefreshReport:
    refreshed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_response(self) -> dict:
        if not self.refreshed and not self.failed:
            return {"message": "No secrets need refreshing"}
        body = {"refreshed": list(self.refreshed)}
        if self.failed:
            body["failed"] = dict(self.failed)
        return body


class CredentialStore:
    """
    Read, validate and refresh per-service bearer tokens.

    Args:
        gateway: Store with get_credential/list_credentials/save_credential
        authenticators: Authenticator per service name
        session: HTTP session used for token exchanges
        clock: Returns the current aware UTC time
        refresh_margin: Tokens expiring sooner than this are refreshed
        timeout: HTTP timeout for auth calls in seconds
    """

    def __init__(
        self,
        gateway,
        authenticators: Dict[str, Authenticator],
        session: requests.Session,
        clock: Callable[[], datetime] = utc_now,
        refresh_margin: timedelta = ONE_DAY,
        timeout: float = 60,
    ):
        self.gateway = gateway
        self.authenticators = authenticators
        self.session = session
        self.clock = clock
        self.refresh_margin = refresh_margin
        self.timeout = timeout

    def get(self, service: str) -> str:
        credential = self.gateway.get_credential(service)
        if credential is None or not credential.token:
            raise CredentialMissing(service)
        return credential.token

    def refresh(self, service: str) -> str:
        authenticator = self.authenticators.get(service)
        if authenticator is None:
            raise ConfigurationMissing([f"authenticator for {service}"])

        credential = authenticator.fetch(self.session, self.clock(), self.timeout)
        self.gateway.save_credential(credential)
        log_progress(
            "Credentials",
            f"Refreshed {service} token",
            expiry=credential.expiry.isoformat() if credential.expiry else None,
        )
        return credential.token

    def needs_refresh(self, credential: Optional[Credential], now: Optional[datetime] = None) -> bool:
        if credential is None or not credential.token or credential.expiry is None:
            return True
        now = now or self.clock()
        return _as_aware(credential.expiry) - _as_aware(now) < self.refresh_margin

    def get_valid(self, service: str) -> str:
        """
        Return a token that is outside the refresh margin, refreshing it first if needed.

        Raises:
            CredentialMissing: No token is stored and the service cannot be refreshed
        """
        credential = self.gateway.get_credential(service)
        if not self.needs_refresh(credential):
            return credential.token
        if service not in self.authenticators:
            if credential is None or not credential.token:
                raise CredentialMissing(service)
            # Nothing to refresh with; the channel decides whether the token still works
            log_warning("Credentials", f"No authenticator for {service}, using stored token near expiry")
            return credential.token
        return self.refresh(service)

    def refresh_expiring(self, services: Optional[Iterable[str]] = None) -> RefreshReport:
        """
        Refresh every listed service whose token is missing or inside the margin.

        Each service is handled on its own; a failure is recorded in the report
        and does not stop the remaining services.

        Args:
            services: Service names to consider, defaults to SCHEDULED_SERVICES

        Returns:
            RefreshReport with the refreshed services and per-service failures
        """
        services = list(services) if services is not None else list(SCHEDULED_SERVICES)
        stored = {credential.service: credential for credential in self.gateway.list_credentials()}
        now = self.clock()
        report = RefreshReport()

        for service in services:
            if not self.needs_refresh(stored.get(service), now):
                continue
            try:
                self.refresh(service)
            except Exception as e:
                log_error(f"Credentials - {service}", e)
                report.failed[service] = str(e)
            else:
                report.refreshed.append(service)
        return report
