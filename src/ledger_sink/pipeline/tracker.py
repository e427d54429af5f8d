"""Slot confirmation tracker - gates row commitment on slot status.

Per slot state machine:

    processed -> confirmed -> rooted      (terminal, committed)
    processed | confirmed  -> dead        (terminal, discarded)

Under HOLD_THEN_RELEASE rows of a slot are buffered until the slot is
confirmed and dropped if it dies first. Under WRITE_THEN_COMPENSATE rows are
written at once and a tombstone is issued for each of them if the slot dies.
Rows released for a confirmed slot that later dies are compensated the same
way, so after convergence storage only holds rows of rooted slots.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ledger_sink.codec.rows import RowCodec
from ledger_sink.errors import ProtocolViolation
from ledger_sink.models.config import ConfirmationPolicy, TrackerConfig
from ledger_sink.models.events import (
    AccountUpdateEvent,
    RowEvent,
    SlotStatus,
    SlotStatusEvent,
)
from ledger_sink.models.records import HeldRow, PendingSlot, RowMutation, TrackerDecision
from ledger_sink.observability.events import StaleSlot
from ledger_sink.observability.metrics import PipelineMetrics

log = logging.getLogger(__name__)


class SlotConfirmationTracker:
    """Owns every PendingSlot; all access is serialized by one lock."""

    def __init__(
        self,
        codec: RowCodec,
        policy: ConfirmationPolicy = ConfirmationPolicy.HOLD_THEN_RELEASE,
        config: TrackerConfig | None = None,
        metrics: PipelineMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._codec = codec
        self._policy = policy
        self._cfg = config or TrackerConfig()
        self._metrics = metrics or PipelineMetrics()
        self._clock = clock
        self._pending: dict[int, PendingSlot] = {}
        self._finalized: dict[int, SlotStatus] = {}
        # highest slot evicted from _finalized; unknown slots at or below it are over
        self._retention_floor: int | None = None
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

    @property
    def policy(self) -> ConfirmationPolicy:
        return self._policy

    # ── Inspection ─────────────────────────────────────────

    def pending_slot(self, slot: int) -> PendingSlot | None:
        return self._pending.get(slot)

    def pending_slots(self) -> list[int]:
        return sorted(self._pending)

    def status_of(self, slot: int) -> SlotStatus | None:
        if slot in self._finalized:
            return self._finalized[slot]
        entry = self._pending.get(slot)
        return entry.status if entry else None

    # ── Row admission ──────────────────────────────────────

    async def admit(self, event: RowEvent, mutations: list[RowMutation]) -> TrackerDecision:
        """Decide whether the rows of one event are written, held or dropped."""
        if not mutations:
            return TrackerDecision()
        async with self._lock:
            slot = event.slot
            terminal = self._finalized.get(slot)
            if terminal == SlotStatus.DEAD:
                log.debug("Discarding %s for dead slot %d", type(event).__name__, slot)
                return TrackerDecision(discarded=[mutations[0].table])
            if terminal == SlotStatus.ROOTED:
                return TrackerDecision(dispatch=list(mutations))
            if self._forgotten(slot):
                log.warning(
                    "Discarding %s for slot %d, already outside the finalized window",
                    type(event).__name__, slot,
                )
                return TrackerDecision(
                    discarded=[mutations[0].table], discard_reason="forgotten_slot",
                )

            entry = self._entry(slot)
            if (
                self._policy == ConfirmationPolicy.WRITE_THEN_COMPENSATE
                or entry.status == SlotStatus.CONFIRMED
            ):
                entry.written_keys.update((m.table, m.row_key) for m in mutations)
                return TrackerDecision(dispatch=list(mutations))

            first = mutations[0]
            key = (first.table, first.row_key)
            version = event.write_version if isinstance(event, AccountUpdateEvent) else slot
            held = entry.held.get(key)
            if held is None or version >= held.version:
                entry.held[key] = HeldRow(
                    table=first.table, row_key=first.row_key, version=version,
                    mutations=list(mutations),
                )
            return TrackerDecision(held=1)

    # ── Status transitions ─────────────────────────────────

    async def transition(self, event: SlotStatusEvent) -> TrackerDecision:
        """Apply a slot status. Raises ProtocolViolation for impossible transitions."""
        async with self._lock:
            slot, status = event.slot, event.status
            terminal = self._finalized.get(slot)
            if terminal is not None:
                if terminal == SlotStatus.DEAD and status != SlotStatus.DEAD:
                    raise ProtocolViolation(
                        f"slot {slot} reported {status.value} after it was dead", slot,
                    )
                if terminal == SlotStatus.ROOTED and status == SlotStatus.DEAD:
                    raise ProtocolViolation(f"slot {slot} reported dead after it was rooted", slot)
                # re-delivered or stale status: no regression
                return TrackerDecision()
            if self._forgotten(slot):
                log.debug("Ignoring %s for slot %d outside the finalized window", status.value, slot)
                return TrackerDecision()

            if status == SlotStatus.ROOTED:
                parent = event.parent_slot
                if parent is None and slot in self._pending:
                    parent = self._pending[slot].parent_slot
                if parent is not None and self._finalized.get(parent) == SlotStatus.DEAD:
                    raise ProtocolViolation(
                        f"slot {slot} rooted on top of dead parent {parent}", slot,
                    )
                slot_row = self._codec.encode(
                    SlotStatusEvent(slot=slot, parent_slot=parent, status=status),
                )

            entry = self._entry(slot)
            if event.parent_slot is not None:
                entry.parent_slot = event.parent_slot

            if status == SlotStatus.PROCESSED:
                return TrackerDecision()

            if status == SlotStatus.CONFIRMED:
                if entry.status == SlotStatus.CONFIRMED:
                    return TrackerDecision()
                entry.status = SlotStatus.CONFIRMED
                decision = self._release(entry)
                log.debug("Slot %d confirmed, released %d rows", slot, len(decision.dispatch))
                return decision

            if status == SlotStatus.ROOTED:
                decision = self._release(entry)
                decision.dispatch.extend(slot_row)
                self._finish(slot, SlotStatus.ROOTED)
                log.debug("Slot %d rooted", slot)
                return decision

            # DEAD
            decision = TrackerDecision(discarded=[held.table for held in entry.held.values()])
            decision.tombstones = [
                self._codec.tombstone(table, row_key)
                for table, row_key in sorted(entry.written_keys)
            ]
            self._finish(slot, SlotStatus.DEAD)
            log.info(
                "Slot %d dead: %d held rows discarded, %d tombstones",
                slot, len(decision.discarded), len(decision.tombstones),
            )
            return decision

    def _forgotten(self, slot: int) -> bool:
        return (
            self._retention_floor is not None
            and slot <= self._retention_floor
            and slot not in self._pending
        )

    def _entry(self, slot: int) -> PendingSlot:
        entry = self._pending.get(slot)
        if entry is None:
            entry = PendingSlot(slot=slot, first_seen_at=self._clock())
            self._pending[slot] = entry
            self._metrics.pending_slots.set(len(self._pending))
        return entry

    @staticmethod
    def _release(entry: PendingSlot) -> TrackerDecision:
        decision = TrackerDecision()
        for key, held in entry.held.items():
            decision.dispatch.extend(held.mutations)
            entry.written_keys.add(key)
        entry.held.clear()
        return decision

    def _finish(self, slot: int, status: SlotStatus) -> None:
        self._pending.pop(slot, None)
        self._finalized[slot] = status
        while len(self._finalized) > self._cfg.finalized_slot_retention:
            evicted = next(iter(self._finalized))
            self._finalized.pop(evicted)
            if self._retention_floor is None or evicted > self._retention_floor:
                self._retention_floor = evicted
        self._metrics.pending_slots.set(len(self._pending))

    # ── Stale slots ────────────────────────────────────────

    async def sweep(self, now: float | None = None) -> list[StaleSlot]:
        """Report slots without a terminal status after stale_slot_timeout.

        Slots are reported at most once per timeout period and never dropped:
        finality is the host's call.
        """
        now = self._clock() if now is None else now
        timeout = self._cfg.stale_slot_timeout
        reports: list[StaleSlot] = []
        async with self._lock:
            for entry in self._pending.values():
                age = now - entry.first_seen_at
                if age < timeout:
                    continue
                if entry.last_reported_at is not None and now - entry.last_reported_at < timeout:
                    continue
                entry.retry_count += 1
                entry.last_reported_at = now
                reports.append(StaleSlot(
                    slot=entry.slot,
                    status=entry.status.value,
                    age_seconds=round(age, 3),
                    reports=entry.retry_count,
                ))
        for report in reports:
            log.warning(
                "Slot %d stale: %s for %.0fs with %d held rows (report #%d)",
                report.slot, report.status, report.age_seconds,
                len(self._pending[report.slot].held) if report.slot in self._pending else 0,
                report.reports,
            )
            self._metrics.stale_slots.inc()
            self._metrics.emit(report)
        return reports

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="stale-slot-sweeper")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cfg.sweep_interval)
            await self.sweep()
