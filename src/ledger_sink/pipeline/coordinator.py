"""Ingestion coordinator - single entry point for host notifications."""

from __future__ import annotations

import logging

from ledger_sink.codec.rows import RowCodec
from ledger_sink.errors import EncodeError, ProtocolViolation, StorageFailure
from ledger_sink.interfaces.selector import AccountFilter, TransactionFilter
from ledger_sink.models.events import (
    AccountUpdateEvent,
    LedgerEvent,
    SlotStatusEvent,
    TransactionEvent,
    event_category,
)
from ledger_sink.models.records import TrackerDecision, WriteBatch
from ledger_sink.observability.events import ProtocolViolationEvent
from ledger_sink.observability.metrics import PipelineMetrics
from ledger_sink.pipeline.batcher import WriteBatcher
from ledger_sink.pipeline.tracker import SlotConfirmationTracker

log = logging.getLogger(__name__)


class IngestionCoordinator:
    """Routes notifications through selectors, codec, tracker and batcher.

    on_event() returns once the event's rows are enqueued (or held/dropped);
    the only place it can wait is the batcher's backpressure.
    """

    def __init__(
        self,
        codec: RowCodec,
        tracker: SlotConfirmationTracker,
        batcher: WriteBatcher,
        metrics: PipelineMetrics,
        accounts_selector: AccountFilter | None = None,
        transaction_selector: TransactionFilter | None = None,
        strict_protocol: bool = False,
        panic_on_storage_errors: bool = False,
    ) -> None:
        self._codec = codec
        self._tracker = tracker
        self._batcher = batcher
        self._metrics = metrics
        self._accounts_selector = accounts_selector
        self._transaction_selector = transaction_selector
        self._strict_protocol = strict_protocol
        self._panic_on_storage_errors = panic_on_storage_errors
        self._storage_failure: Exception | None = None

        tables = codec.tables
        self._table_category = {
            tables.accounts: "account",
            tables.transactions: "transaction",
            tables.blocks: "block",
            tables.slots: "slot",
        }

    # ── Host entry point ───────────────────────────────────

    async def on_event(self, event: LedgerEvent) -> None:
        """Accept one notification, in host emission order."""
        self._raise_if_failed()
        category = event_category(event)
        self._metrics.events_received.labels(category=category).inc()

        if isinstance(event, SlotStatusEvent):
            await self._on_slot_status(event)
            return

        if not self._is_selected(event):
            self._discard(category, "not_selected")
            return

        try:
            mutations = self._codec.encode(event)
        except EncodeError as exc:
            log.warning("Dropping %s event at slot %d: %s", category, event.slot, exc)
            self._discard(category, "encode_error")
            return

        if isinstance(event, AccountUpdateEvent) and event.is_startup:
            # snapshot restore: the slot is already rooted
            await self._batcher.enqueue_many(mutations)
            self._metrics.events_dispatched.labels(category=category).inc()
            return

        decision = await self._tracker.admit(event, mutations)
        if decision.held:
            self._metrics.events_held.labels(category=category).inc(decision.held)
        await self._apply(decision)

    async def notify_end_of_startup(self) -> None:
        """Seal everything buffered during the startup bulk load."""
        log.info("End of startup notifications, flushing %d buffered mutations",
                 self._batcher.buffered())
        await self._batcher.flush()

    def record_storage_failure(self, batch: WriteBatch, exc: Exception) -> None:
        """Batcher failure callback. Remembers the first failure in panic mode."""
        if self._panic_on_storage_errors and self._storage_failure is None:
            self._storage_failure = exc

    # ── Internals ──────────────────────────────────────────

    def _raise_if_failed(self) -> None:
        if self._storage_failure is not None:
            raise StorageFailure(
                f"storage writes failed: {self._storage_failure}"
            ) from self._storage_failure

    def _is_selected(self, event: LedgerEvent) -> bool:
        if isinstance(event, AccountUpdateEvent):
            if self._accounts_selector is None:
                return True
            return self._accounts_selector.is_account_selected(event.pubkey, event.owner)
        if isinstance(event, TransactionEvent):
            if self._transaction_selector is None:
                return True
            return self._transaction_selector.is_transaction_selected(
                event.is_vote, event.accounts_touched,
            )
        return True

    async def _on_slot_status(self, event: SlotStatusEvent) -> None:
        try:
            decision = await self._tracker.transition(event)
        except ProtocolViolation as exc:
            log.error("PROTOCOL VIOLATION from host, ignoring slot status: %s", exc)
            self._metrics.protocol_violations.inc()
            self._metrics.emit(ProtocolViolationEvent(slot=exc.slot, detail=str(exc)))
            self._discard("slot", "protocol_violation")
            if self._strict_protocol:
                raise
            return
        except EncodeError as exc:
            log.warning("Dropping slot status for slot %d: %s", event.slot, exc)
            self._discard("slot", "encode_error")
            return
        await self._apply(decision)

    async def _apply(self, decision: TrackerDecision) -> None:
        for table in decision.discarded:
            self._discard(self._table_category.get(table, table), decision.discard_reason)

        # one call, so the decision's rows stay contiguous in the buffers
        if decision.dispatch or decision.tombstones:
            await self._batcher.enqueue_many(decision.dispatch + decision.tombstones)

        # one event per distinct row key
        rows = {(m.table, m.row_key) for m in decision.dispatch}
        for table, _ in rows:
            self._metrics.events_dispatched.labels(
                category=self._table_category.get(table, table),
            ).inc()
        for m in decision.tombstones:
            self._metrics.tombstones.labels(table=m.table).inc()

    def _discard(self, category: str, reason: str) -> None:
        self._metrics.events_discarded.labels(category=category, reason=reason).inc()
