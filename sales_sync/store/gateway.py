"""
PostgreSQL persistence gateway.

Every public method is one transaction: it commits on success and rolls
back on failure. psycopg2 errors surface as PersistenceError so a run can
report which write failed.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import execute_values

from sales_sync.config import Config
from sales_sync.errors import PersistenceError
from sales_sync.models import (
    ITEM_COLUMNS,
    ORDER_COLUMNS,
    Credential,
    Order,
    OrderItem,
    SyncWatermark,
)

ORDER_KEY = ("channel", "order_id")
ITEM_KEY = ("channel", "order_id", "item_key")
GEO_COLUMNS = ("customer_city", "customer_state", "customer_pincode")


def connect_from_config():
    """Open a psycopg2 connection from Config (DATABASE_URL or the Secrets Manager secret)."""
    details = dict(Config.get_db_connection_details())
    details.setdefault("connect_timeout", 10)
    return psycopg2.connect(**details)


def _upsert_sql(table: str, columns: Sequence[str], key: Sequence[str], preserve: Iterable[str] = ()) -> str:
    preserved = set(key) | set(preserve)
    assignments = ", ".join(
        f"{column} = EXCLUDED.{column}" for column in columns if column not in preserved
    )
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s "
        f"ON CONFLICT ({', '.join(key)}) DO UPDATE SET {assignments}"
    )


class PostgresGateway:
    """
    Store access for orders, items, credentials, watermarks and run leases.

    Args:
        connect: Zero-argument factory returning a psycopg2 connection;
            the connection is opened on first use and reused
        page_size: Rows per execute_values statement
    """

    def __init__(self, connect: Callable[[], Any] = connect_from_config, page_size: int = 500):
        self._connect = connect
        self._conn = None
        self.page_size = page_size

    @property
    def conn(self):
        if self._conn is None or getattr(self._conn, "closed", 0):
            try:
                self._conn = self._connect()
            except psycopg2.Error as e:
                raise PersistenceError("connect", e)
        return self._conn

    def close(self) -> None:
        if self._conn is not None and not getattr(self._conn, "closed", 0):
            self._conn.close()
        self._conn = None

    def __enter__(self) -> "PostgresGateway":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def _transaction(self, operation: str):
        conn = self.conn
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise PersistenceError(operation, e)
        except Exception:
            conn.rollback()
            raise

    # Orders and items

    def upsert_orders(self, orders: Sequence[Order], preserve_columns: Iterable[str] = ()) -> int:
        """
        Insert or fully overwrite orders by (channel, order_id).

        Args:
            orders: Canonical orders, unique by key within the batch
            preserve_columns: Columns left untouched when the row already exists

        Returns:
            Number of rows written
        """
        if not orders:
            return 0
        sql = _upsert_sql("sales.orders", ORDER_COLUMNS, ORDER_KEY, preserve_columns)
        values = [tuple(order.to_row()[column] for column in ORDER_COLUMNS) for order in orders]
        with self._transaction("upsert_orders") as cursor:
            execute_values(cursor, sql, values, page_size=self.page_size)
        return len(values)

    def upsert_items(self, items: Sequence[OrderItem]) -> int:
        if not items:
            return 0
        sql = _upsert_sql("sales.order_items", ITEM_COLUMNS, ITEM_KEY)
        values = [tuple(item.to_row()[column] for column in ITEM_COLUMNS) for item in items]
        with self._transaction("upsert_items") as cursor:
            execute_values(cursor, sql, values, page_size=self.page_size)
        return len(values)

    def delete_stale_items(self, item_keys_by_order: Mapping[Tuple[str, str], Sequence[str]]) -> int:
        """
        Delete, per order, stored items whose key is not in that order's current set.

        An empty key set deletes every item of the order.

        Returns:
            Number of item rows deleted
        """
        deleted = 0
        with self._transaction("delete_stale_items") as cursor:
            for (channel, order_id), keys in item_keys_by_order.items():
                if keys:
                    cursor.execute(
                        "DELETE FROM sales.order_items "
                        "WHERE channel = %s AND order_id = %s AND NOT (item_key = ANY(%s::text[]))",
                        (channel, order_id, list(keys)),
                    )
                else:
                    cursor.execute(
                        "DELETE FROM sales.order_items WHERE channel = %s AND order_id = %s",
                        (channel, order_id),
                    )
                deleted += max(cursor.rowcount, 0)
        return deleted

    def delete_items_for_orders(self, channel: str, order_ids: Sequence[str]) -> int:
        if not order_ids:
            return 0
        with self._transaction("delete_items_for_orders") as cursor:
            cursor.execute(
                "DELETE FROM sales.order_items WHERE channel = %s AND order_id = ANY(%s::text[])",
                (channel, list(order_ids)),
            )
            return max(cursor.rowcount, 0)

    def delete_orders(self, channel: str, order_ids: Sequence[str]) -> int:
        if not order_ids:
            return 0
        with self._transaction("delete_orders") as cursor:
            cursor.execute(
                "DELETE FROM sales.orders WHERE channel = %s AND order_id = ANY(%s::text[])",
                (channel, list(order_ids)),
            )
            return max(cursor.rowcount, 0)

    # Geo enrichment

    def select_orders_missing_geo(self, channel: str, limit: int) -> List[str]:
        with self._transaction("select_orders_missing_geo") as cursor:
            cursor.execute(
                "SELECT order_id FROM sales.orders "
                "WHERE channel = %s AND (customer_city IS NULL OR customer_state IS NULL "
                "OR customer_pincode IS NULL) "
                "ORDER BY order_id LIMIT %s",
                (channel, limit),
            )
            return [row[0] for row in cursor.fetchall()]

    def update_order_geo(self, channel: str, rows: Mapping[str, Mapping[str, Optional[str]]]) -> int:
        """
        Overwrite only the geo columns of existing orders.

        Args:
            channel: Channel the order ids belong to
            rows: Geo values (customer_city/state/pincode) by order_id

        Returns:
            Number of order rows updated
        """
        if not rows:
            return 0
        values = [
            (channel, order_id, geo.get("customer_city"), geo.get("customer_state"), geo.get("customer_pincode"))
            for order_id, geo in rows.items()
        ]
        sql = (
            "UPDATE sales.orders AS o SET "
            "customer_city = v.customer_city, customer_state = v.customer_state, "
            "customer_pincode = v.customer_pincode "
            "FROM (VALUES %s) AS v(channel, order_id, customer_city, customer_state, customer_pincode) "
            "WHERE o.channel = v.channel AND o.order_id = v.order_id "
            "RETURNING o.order_id"
        )
        with self._transaction("update_order_geo") as cursor:
            updated = execute_values(cursor, sql, values, page_size=self.page_size, fetch=True)
        return len(updated)

    # Credentials

    def get_credential(self, service: str) -> Optional[Credential]:
        with self._transaction("get_credential") as cursor:
            cursor.execute(
                "SELECT service, key, expiry FROM private.api_keys "
                "WHERE service = %s ORDER BY id DESC LIMIT 1",
                (service,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return Credential(service=row[0], token=row[1], expiry=row[2])

    def list_credentials(self) -> List[Credential]:
        with self._transaction("list_credentials") as cursor:
            cursor.execute(
                "SELECT DISTINCT ON (service) service, key, expiry FROM private.api_keys "
                "ORDER BY service, id DESC"
            )
            rows = cursor.fetchall()
        return [Credential(service=row[0], token=row[1], expiry=row[2]) for row in rows]

    def save_credential(self, credential: Credential) -> None:
        with self._transaction("save_credential") as cursor:
            cursor.execute(
                "INSERT INTO private.api_keys (service, key, expiry) VALUES (%s, %s, %s) "
                "ON CONFLICT (service) DO UPDATE SET key = EXCLUDED.key, expiry = EXCLUDED.expiry",
                (credential.service, credential.token, credential.expiry),
            )

    # Watermarks

    def get_watermark(self, channel: str) -> Optional[SyncWatermark]:
        with self._transaction("get_watermark") as cursor:
            cursor.execute("SELECT channel, updated FROM sales.last_updated WHERE channel = %s", (channel,))
            row = cursor.fetchone()
        if row is None:
            return None
        return SyncWatermark(channel=row[0], updated=row[1])

    def upsert_watermark(self, channel: str, updated: datetime) -> None:
        with self._transaction("upsert_watermark") as cursor:
            cursor.execute(
                "INSERT INTO sales.last_updated (channel, updated) VALUES (%s, %s) "
                "ON CONFLICT (channel) DO UPDATE SET updated = EXCLUDED.updated",
                (channel, updated),
            )

    # Run leases

    def try_acquire_lease(self, channel: str, owner: str, ttl_seconds: int) -> bool:
        """Take the channel's run lease unless another owner holds an unexpired one."""
        with self._transaction("try_acquire_lease") as cursor:
            cursor.execute(
                "INSERT INTO sales.sync_leases (channel, owner, expires_at) "
                "VALUES (%s, %s, now() + %s * interval '1 second') "
                "ON CONFLICT (channel) DO UPDATE SET owner = EXCLUDED.owner, expires_at = EXCLUDED.expires_at "
                "WHERE sales.sync_leases.expires_at < now() OR sales.sync_leases.owner = EXCLUDED.owner "
                "RETURNING owner",
                (channel, owner, ttl_seconds),
            )
            return cursor.fetchone() is not None

    def release_lease(self, channel: str, owner: str) -> None:
        with self._transaction("release_lease") as cursor:
            cursor.execute(
                "DELETE FROM sales.sync_leases WHERE channel = %s AND owner = %s",
                (channel, owner),
            )
