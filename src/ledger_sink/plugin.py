"""Host-facing plugin - wires all components together."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Iterable

from ledger_sink.codec.rows import RowCodec
from ledger_sink.errors import ConfigurationError
from ledger_sink.interfaces.source import EventSource
from ledger_sink.interfaces.store import TableStore
from ledger_sink.models.config import SinkConfig, StorageBackend
from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    LedgerEvent,
    SlotStatusEvent,
    TransactionEvent,
)
from ledger_sink.observability.metrics import PipelineMetrics
from ledger_sink.pipeline.batcher import WriteBatcher
from ledger_sink.pipeline.coordinator import IngestionCoordinator
from ledger_sink.pipeline.tracker import SlotConfirmationTracker
from ledger_sink.pipeline.writer import StorageWriter
from ledger_sink.policy.selector import AccountsSelector, TransactionSelector
from ledger_sink.source.jsonl import JsonLinesSource
from ledger_sink.storage.auth import ServiceAccountToken, StaticToken, TokenProvider
from ledger_sink.storage.bigtable import BigtableTableStore
from ledger_sink.storage.sqlite import SQLiteTableStore

log = logging.getLogger(__name__)


def build_store(cfg: SinkConfig) -> TableStore:
    """Create the table store selected by `storage.backend`."""
    st = cfg.storage
    if st.backend == StorageBackend.SQLITE:
        return SQLiteTableStore(
            st.db_path, tables=cfg.tables.all(), max_cell_bytes=cfg.batch.max_cell_bytes,
        )

    if not st.project or not st.instance:
        raise ConfigurationError("bigtable backend needs storage.project and storage.instance")
    tokens: TokenProvider
    if st.access_token:
        tokens = StaticToken(st.access_token)
    elif st.credential_path:
        tokens = ServiceAccountToken(st.credential_path)
    else:
        raise ConfigurationError(
            "bigtable backend needs storage.credential_path or LEDGER_SINK_ACCESS_TOKEN"
        )
    return BigtableTableStore(
        st.project, st.instance, tokens,
        endpoint=st.endpoint, app_profile_id=st.app_profile_id, timeout=st.timeout,
    )


class LedgerSinkPlugin:
    """Ledger persistence plugin.

    Exposes the validator host callbacks and owns the lifecycle of the
    store, the batcher timer and the stale-slot sweeper.
    """

    def __init__(self, cfg: SinkConfig, store: TableStore | None = None) -> None:
        self._cfg = cfg
        self._running = False
        self._stop_requested = False

        # Core components
        self.metrics = PipelineMetrics()
        self.codec = RowCodec(cfg.tables, max_cell_bytes=cfg.batch.max_cell_bytes)
        self.store = store if store is not None else build_store(cfg)
        self.writer = StorageWriter(self.store, cfg.retry, self.metrics)
        self.tracker = SlotConfirmationTracker(
            self.codec, cfg.policy, cfg.tracker, self.metrics,
        )
        self.accounts_selector = AccountsSelector(cfg.selectors.accounts, cfg.selectors.owners)
        self.transaction_selector = TransactionSelector(cfg.selectors.mentions)

        # The batcher reports failures back to the coordinator
        self.batcher = WriteBatcher(
            self.writer,
            batch_size=cfg.batch.size,
            max_latency=cfg.batch.max_latency,
            max_in_flight=cfg.batch.max_in_flight,
            metrics=self.metrics,
            on_failure=self._on_batch_failure,
        )
        self.coordinator = IngestionCoordinator(
            self.codec, self.tracker, self.batcher, self.metrics,
            accounts_selector=self.accounts_selector,
            transaction_selector=self.transaction_selector,
            strict_protocol=cfg.strict_protocol,
            panic_on_storage_errors=cfg.panic_on_storage_errors,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open the store and start the background tasks."""
        log.info("Starting ledger sink")
        log.info("  Backend: %s", self._cfg.storage.backend.value)
        log.info("  Policy: %s", self._cfg.policy.value)
        log.info("  Accounts: %r", self.accounts_selector)
        log.info("  Transactions: %r", self.transaction_selector)

        await self.store.initialize()
        self.batcher.start()
        self.tracker.start()
        if self._cfg.metrics_port:
            self.metrics.serve(self._cfg.metrics_port)
        self._running = True

    async def stop(self) -> int:
        """Drain buffered writes (bounded by shutdown_timeout) and close the store.

        Returns the number of batches abandoned.
        """
        if not self._running:
            return 0
        log.info("Stop requested, draining writes")
        self._running = False
        await self.tracker.stop()
        unflushed = await self.batcher.close(self._cfg.shutdown_timeout)
        pending = self.tracker.pending_slots()
        if pending:
            log.info("%d slots still pending at shutdown (held rows are dropped)", len(pending))
        await self.store.close()
        log.info("Ledger sink shut down cleanly")
        return unflushed

    def request_stop(self) -> None:
        """Ask a running replay to stop after the current event."""
        self._stop_requested = True

    def _on_batch_failure(self, batch, exc: Exception) -> None:
        self.coordinator.record_storage_failure(batch, exc)

    # ── Host callbacks ─────────────────────────────────────

    async def on_event(self, event: LedgerEvent) -> None:
        await self.coordinator.on_event(event)

    async def update_account(self, event: AccountUpdateEvent) -> None:
        await self.coordinator.on_event(event)

    async def update_slot_status(self, event: SlotStatusEvent) -> None:
        await self.coordinator.on_event(event)

    async def notify_transaction(self, event: TransactionEvent) -> None:
        await self.coordinator.on_event(event)

    async def notify_block_metadata(self, event: BlockMetadataEvent) -> None:
        await self.coordinator.on_event(event)

    async def notify_end_of_startup(self) -> None:
        await self.coordinator.notify_end_of_startup()

    def account_data_notifications_enabled(self) -> bool:
        return self.accounts_selector.is_enabled()

    def transaction_notifications_enabled(self) -> bool:
        return self.transaction_selector.is_enabled()

    # ── Replay ─────────────────────────────────────────────

    async def replay(self, source: EventSource) -> int:
        """Feed every event of `source` through the pipeline. Returns the count."""
        count = 0
        async for event in source.events():
            if self._stop_requested:
                log.info("Replay interrupted after %d events", count)
                break
            await self.on_event(event)
            count += 1
        return count


async def run_replay(cfg: SinkConfig, lines: Iterable[str]) -> LedgerSinkPlugin:
    """Entry point for replaying a recorded notification stream."""
    plugin = LedgerSinkPlugin(cfg)
    source = JsonLinesSource(lines)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        log.info("Signal received, stopping replay")
        plugin.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await plugin.start()
    try:
        count = await plugin.replay(source)
        log.info("Replayed %d events (%d lines skipped)", count, source.skipped)
    finally:
        await plugin.stop()
    return plugin
