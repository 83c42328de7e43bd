"""
Shared fixtures: an in-memory gateway, fake HTTP responses and a fixed clock.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import psycopg2
import pytest

from sales_sync.errors import PersistenceError
from sales_sync.models import Credential, SyncWatermark

FIXED_NOW = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    """Just enough of requests.Response for the connectors."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def make_session(*responses: FakeResponse) -> MagicMock:
    """Session whose request/get/post return the given responses in order."""
    session = MagicMock()
    queue = list(responses)
    session.request.side_effect = queue
    return session


class InMemoryGateway:
    """Gateway double with the PostgresGateway interface, backed by dicts."""

    def __init__(self):
        self.orders: Dict[tuple, Dict[str, Any]] = {}
        self.items: Dict[tuple, Dict[str, Any]] = {}
        self.credentials: Dict[str, Credential] = {}
        self.watermarks: Dict[str, datetime] = {}
        self.leases: Dict[str, str] = {}
        self.calls: List[str] = []
        self.fail_on: set = set()

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PersistenceError(operation, psycopg2.Error("constraint violation"))

    @property
    def write_calls(self) -> List[str]:
        reads = {"get_credential", "list_credentials", "get_watermark", "select_orders_missing_geo"}
        return [call for call in self.calls if call not in reads]

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def upsert_orders(self, orders, preserve_columns=()):
        self._record("upsert_orders")
        for order in orders:
            row = order.to_row()
            existing = self.orders.get(order.key)
            if existing is not None:
                for column in preserve_columns:
                    row[column] = existing[column]
            self.orders[order.key] = row
        return len(orders)

    def upsert_items(self, items):
        self._record("upsert_items")
        for item in items:
            self.items[item.key] = item.to_row()
        return len(items)

    def delete_stale_items(self, item_keys_by_order):
        self._record("delete_stale_items")
        deleted = 0
        for (channel, order_id), keys in item_keys_by_order.items():
            for key in list(self.items):
                if key[0] == channel and key[1] == order_id and key[2] not in keys:
                    del self.items[key]
                    deleted += 1
        return deleted

    def delete_items_for_orders(self, channel, order_ids):
        self._record("delete_items_for_orders")
        doomed = [key for key in self.items if key[0] == channel and key[1] in set(order_ids)]
        for key in doomed:
            del self.items[key]
        return len(doomed)

    def delete_orders(self, channel, order_ids):
        self._record("delete_orders")
        doomed = [key for key in self.orders if key[0] == channel and key[1] in set(order_ids)]
        for key in doomed:
            del self.orders[key]
        return len(doomed)

    def select_orders_missing_geo(self, channel, limit):
        self._record("select_orders_missing_geo")
        missing = [
            key[1]
            for key, row in sorted(self.orders.items())
            if key[0] == channel
            and (row["customer_city"] is None or row["customer_state"] is None or row["customer_pincode"] is None)
        ]
        return missing[:limit]

    def update_order_geo(self, channel, rows):
        self._record("update_order_geo")
        updated = 0
        for order_id, geo in rows.items():
            row = self.orders.get((channel, order_id))
            if row is not None:
                row.update(geo)
                updated += 1
        return updated

    def get_credential(self, service):
        self._record("get_credential")
        return self.credentials.get(service)

    def list_credentials(self):
        self._record("list_credentials")
        return list(self.credentials.values())

    def save_credential(self, credential):
        self._record("save_credential")
        self.credentials[credential.service] = credential

    def get_watermark(self, channel):
        self._record("get_watermark")
        if channel not in self.watermarks:
            return None
        return SyncWatermark(channel, self.watermarks[channel])

    def upsert_watermark(self, channel, updated):
        self._record("upsert_watermark")
        self.watermarks[channel] = updated

    def try_acquire_lease(self, channel, owner, ttl_seconds):
        self._record("try_acquire_lease")
        if channel in self.leases and self.leases[channel] != owner:
            return False
        self.leases[channel] = owner
        return True

    def release_lease(self, channel, owner):
        self._record("release_lease")
        if self.leases.get(channel) == owner:
            del self.leases[channel]


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def no_sleep():
    return MagicMock()
