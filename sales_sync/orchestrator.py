"""
Sync orchestrator: one run of one channel, end to end.

A run moves through

    Idle -> FetchingCredential -> Connecting -> Normalizing -> Reconciling
         -> Persisting -> Done

and any stage may end in Failed. Every page is fetched before the first
write. Writes go orders, items, stale-item cleanup, then watermark. The
post-sync hook runs last. Its errors are reported in the result and do
not fail the run. Releasing the run lease never fails a run either.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from sales_sync.credentials import CredentialStore
from sales_sync.errors import PersistenceError, SyncError, SyncInProgress
from sales_sync.extract.base import RecordSource, SyncWindow
from sales_sync.models import NormalizedOrder, PurgeResult, SyncResult
from sales_sync.reconcile import WriteSet, build_write_set, plan_cancellation_purge
from sales_sync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
    log_warning,
)


class RunState(Enum):
    IDLE = "idle"
    FETCHING_CREDENTIAL = "fetching credential"
    CONNECTING = "connecting"
    NORMALIZING = "normalizing"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncJob:
    """
    Everything channel-specific a run needs.

    Attributes:
        channel: Channel name, also the watermark and lease key
        source_factory: Builds the record source from the bearer token
            (None when credential_service is None)
        normalizer: Batch normalizer for the channel's raw records
        window: Query window handed to the source
        credential_service: Credential store service, None for file uploads
        empty_message: Message returned when the run has nothing to write
        stamp_watermark_on_empty: Stamp the watermark even for empty runs
        preserve_columns: Order columns an upsert must not overwrite
        post_sync: Called with the write-set after a successful run; its
            return value is merged into the response
    """

    channel: str
    source_factory: Callable[[Optional[str]], RecordSource]
    normalizer: Callable[[Iterable[Dict[str, Any]]], List[NormalizedOrder]]
    window: SyncWindow
    credential_service: Optional[str] = None
    empty_message: str = "No orders returned"
    stamp_watermark_on_empty: bool = False
    preserve_columns: tuple = ()
    post_sync: Optional[Callable[[WriteSet], Dict[str, Any]]] = None


class SyncOrchestrator:
    """
    Runs sync jobs against one gateway and credential store.

    Args:
        gateway: Persistence gateway
        credentials: Credential store; only needed for API channels
        clock: Returns the current aware UTC time
        lease_ttl_seconds: Per-channel run lease TTL, 0 disables leasing
    """

    def __init__(
        self,
        gateway,
        credentials: Optional[CredentialStore] = None,
        clock: Callable[[], datetime] = utc_now,
        lease_ttl_seconds: int = 0,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.clock = clock
        self.lease_ttl_seconds = lease_ttl_seconds
        self.state = RunState.IDLE
        self.history: List[RunState] = []

    def _enter(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)

    def _token(self, service: Optional[str]) -> Optional[str]:
        if service is None:
            return None
        if self.credentials is None:
            raise ValueError(f"No credential store configured for {service}")
        return self.credentials.get_valid(service)

    def _acquire_lease(self, channel: str) -> Optional[str]:
        if self.lease_ttl_seconds <= 0:
            return None
        owner = uuid.uuid4().hex
        if not self.gateway.try_acquire_lease(channel, owner, self.lease_ttl_seconds):
            raise SyncInProgress(channel)
        return owner

    def _release_lease(self, channel: str, owner: Optional[str]) -> None:
        if owner is None:
            return
        try:
            self.gateway.release_lease(channel, owner)
        except PersistenceError as e:
            # The lease expires on its own after the TTL
            log_warning(f"Sync - {channel}", f"Could not release run lease: {e}")

    def _run_post_sync(self, job: SyncJob, write_set: WriteSet) -> Dict[str, Any]:
        try:
            return job.post_sync(write_set) or {}
        except Exception as e:
            log_error(f"Post-sync - {job.channel}", e)
            return {"post_sync_error": str(e)}

    def _fail(self, channel: str, error: Exception, counts: Dict[str, Any]) -> SyncError:
        stage = self.state.value
        self._enter(RunState.FAILED)
        wrapped = SyncError(channel, stage, error, counts)
        log_error(f"Sync - {channel}", wrapped.describe())
        return wrapped

    def run(self, job: SyncJob) -> SyncResult:
        """
        Execute one sync run.

        Returns:
            SyncResult with the written counts, or a message when the channel
            reported nothing

        Raises:
            SyncInProgress: Leasing is enabled and another run holds the lease
            SyncError: Any stage failed; carries the stage and counts so far
        """
        section = f"Sync - {job.channel}"
        self.history = []
        self._enter(RunState.IDLE)
        owner = self._acquire_lease(job.channel)
        counts: Dict[str, Any] = {}
        log_section_start(section)

        try:
            self._enter(RunState.FETCHING_CREDENTIAL)
            token = self._token(job.credential_service)

            self._enter(RunState.CONNECTING)
            source = job.source_factory(token)
            records = list(source.iter_records(job.window))
            counts["records_fetched"] = len(records)

            self._enter(RunState.NORMALIZING)
            bundles = job.normalizer(records)
            counts["orders_normalized"] = len(bundles)

            self._enter(RunState.RECONCILING)
            synced_at = self.clock()
            write_set = build_write_set(bundles, synced_at)

            self._enter(RunState.PERSISTING)
            if write_set.is_empty:
                if job.stamp_watermark_on_empty:
                    self.gateway.upsert_watermark(job.channel, synced_at)
                self._enter(RunState.DONE)
                log_section_complete(section, job.empty_message)
                return SyncResult(channel=job.channel, message=job.empty_message)

            counts["orders_written"] = self.gateway.upsert_orders(
                write_set.orders, preserve_columns=job.preserve_columns
            )
            counts["items_written"] = self.gateway.upsert_items(write_set.items)
            counts["stale_items_deleted"] = self.gateway.delete_stale_items(
                write_set.item_keys_by_order
            )
            self.gateway.upsert_watermark(job.channel, synced_at)
            self._enter(RunState.DONE)
        except Exception as e:
            raise self._fail(job.channel, e, counts) from e
        finally:
            self._release_lease(job.channel, owner)

        result = SyncResult(
            channel=job.channel,
            orders_processed=counts["orders_written"],
            items_processed=counts["items_written"],
            stale_items_deleted=counts["stale_items_deleted"],
        )
        log_section_complete(
            section,
            f"{result.orders_processed} orders, {result.items_processed} items, "
            f"{result.stale_items_deleted} stale items removed",
        )

        if job.post_sync is not None:
            result.extra.update(self._run_post_sync(job, write_set))
        return result

    def run_cancellation_purge(
        self,
        channel: str,
        source_factory: Callable[[Optional[str]], RecordSource],
        window: SyncWindow,
        credential_service: Optional[str] = None,
        id_field: str = "shipmentId",
    ) -> PurgeResult:
        """
        Delete every stored order (and its items) the channel reports as cancelled.

        Items are deleted before their orders.

        Raises:
            SyncInProgress: Leasing is enabled and another run holds the lease
            SyncError: Any stage failed
        """
        section = f"Cancellation purge - {channel}"
        self.history = []
        self._enter(RunState.IDLE)
        owner = self._acquire_lease(channel)
        counts: Dict[str, Any] = {}
        log_section_start(section)

        try:
            self._enter(RunState.FETCHING_CREDENTIAL)
            token = self._token(credential_service or channel)

            self._enter(RunState.CONNECTING)
            source = source_factory(token)
            records = list(source.iter_records(window))
            counts["records_fetched"] = len(records)

            self._enter(RunState.RECONCILING)
            shipment_ids = plan_cancellation_purge(record.get(id_field) for record in records)
            result = PurgeResult(cancelled_shipments_found=len(shipment_ids))

            self._enter(RunState.PERSISTING)
            if shipment_ids:
                result.deleted_items = self.gateway.delete_items_for_orders(channel, shipment_ids)
                counts["deleted_items"] = result.deleted_items
                result.deleted_orders = self.gateway.delete_orders(channel, shipment_ids)
            self._enter(RunState.DONE)
        except Exception as e:
            raise self._fail(channel, e, counts) from e
        finally:
            self._release_lease(channel, owner)

        log_progress(
            section,
            "Purge complete",
            cancelled=result.cancelled_shipments_found,
            deleted_orders=result.deleted_orders,
            deleted_items=result.deleted_items,
        )
        log_section_complete(section)
        return result
