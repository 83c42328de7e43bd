"""
Shared pagination contract for channel connectors.

A connector turns a sync window into one or more channel queries, fetches
pages one at a time and hands back the raw channel records lazily. Pages
are walked serially, with a fixed pause between fetches, until the channel
stops returning a continuation cursor.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

import requests

from sales_sync.errors import PaginationLoop, UpstreamAuthError, UpstreamError
from sales_sync.utils.logging_utils import log_progress


@dataclass(frozen=True)
class SyncWindow:
    """
    Time window a run asks a channel for.

    ``backfill`` marks an explicit operator-supplied range rather than the
    channel's rolling lookback.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    backfill: bool = False


@dataclass(frozen=True)
class ChannelQuery:
    """One filter to paginate through (query string params or JSON body)."""

    label: str
    params: Dict[str, Any] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None


@dataclass
class Page:
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None


class RecordSource(Protocol):
    """Anything the orchestrator can pull raw channel records from."""

    channel: str

    def iter_records(self, window: SyncWindow) -> Iterator[Dict[str, Any]]:
        ...


class ChannelConnector:
    """
    Base class for HTTP channel connectors.

    Subclasses implement build_filter() and fetch_page(); iteration, loop
    detection, rate control and status handling live here.
    """

    channel: str = "channel"
    default_page_delay_seconds: float = 0.0

    def __init__(
        self,
        session: requests.Session,
        token: str,
        base_url: str,
        *,
        timeout: float = 60,
        page_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_delay_seconds = (
            self.default_page_delay_seconds
            if page_delay_seconds is None
            else page_delay_seconds
        )
        self._sleep = sleep

    # Channel-specific hooks

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def build_filter(self, window: SyncWindow) -> ChannelQuery:
        raise NotImplementedError

    def build_filters(self, window: SyncWindow) -> List[ChannelQuery]:
        return [self.build_filter(window)]

    def fetch_page(self, query: ChannelQuery, cursor: Optional[str]) -> Page:
        raise NotImplementedError

    # Shared behaviour

    def iter_records(self, window: SyncWindow) -> Iterator[Dict[str, Any]]:
        """
        Yield every record matching the window, query by query, page by page.

        The iterator is not restartable; a retry must start a fresh fetch.

        Raises:
            PaginationLoop: If a continuation cursor repeats within a query
            UpstreamError: On any non-success HTTP status
        """
        for query in self.build_filters(window):
            yield from self._walk(query)

    def _walk(self, query: ChannelQuery) -> Iterator[Dict[str, Any]]:
        section = f"Fetching - {self.channel}"
        seen_cursors = set()
        cursor: Optional[str] = None
        page_count = 0
        record_count = 0

        while True:
            page = self.fetch_page(query, cursor)
            page_count += 1
            record_count += len(page.records)
            log_progress(
                section,
                f"Page {page_count} returned {len(page.records)} records",
                query=query.label,
            )
            yield from page.records

            if not page.next_cursor:
                break
            if page.next_cursor in seen_cursors:
                raise PaginationLoop(self.channel, page.next_cursor)
            seen_cursors.add(page.next_cursor)
            cursor = page.next_cursor

            if self.page_delay_seconds > 0:
                self._sleep(self.page_delay_seconds)

        log_progress(
            section,
            f"Query complete: {record_count} records across {page_count} page(s)",
            query=query.label,
        )

    def _request_json(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Issue an authenticated request and decode the JSON body.

        Raises:
            UpstreamAuthError: On 401/403
            UpstreamError: On any other non-2xx status or an undecodable body
        """
        headers = {"Accept": "application/json", **self.auth_headers()}
        headers.update(kwargs.pop("headers", {}) or {})
        response = self.session.request(
            method, url, headers=headers, timeout=self.timeout, **kwargs
        )

        if response.status_code in (401, 403):
            raise UpstreamAuthError(self.channel, response.status_code, response.text)
        if not 200 <= response.status_code < 300:
            raise UpstreamError(self.channel, response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError(
                self.channel, response.status_code, f"Invalid JSON body: {response.text}"
            )
        if not isinstance(payload, dict):
            raise UpstreamError(
                self.channel,
                response.status_code,
                f"Unexpected response format: {type(payload).__name__}",
            )
        return payload
