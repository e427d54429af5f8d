"""Internal record types: row mutations, batches, write results, slot state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from ledger_sink.models.events import SlotStatus


class MutationKind(str, Enum):
    SET_CELL = "set_cell"
    DELETE_ROW = "delete_row"  # tombstone


class FailureKind(str, Enum):
    """Classification of a failed mutation."""

    TRANSIENT = "transient"  # rate limit / unavailable, retry eligible
    PERMANENT = "permanent"  # malformed row / oversized cell, never retried


@dataclass(frozen=True)
class RowMutation:
    """A single keyed write against a logical table."""

    table: str
    row_key: bytes
    family: str = ""
    qualifier: bytes = b""
    value: bytes = b""
    timestamp: int = 0
    kind: MutationKind = MutationKind.SET_CELL

    @property
    def is_tombstone(self) -> bool:
        return self.kind == MutationKind.DELETE_ROW


@dataclass
class RowEntry:
    """Consecutive mutations for one row key, as sent to the store in one entry."""

    row_key: bytes
    mutations: list[RowMutation] = field(default_factory=list)


@dataclass
class EntryFailure:
    """Per-entry failure reported by a table store."""

    kind: FailureKind
    error: str


@dataclass
class WriteBatch:
    """Sealed set of mutations for one table, in enqueue order."""

    table: str
    mutations: list[RowMutation]
    sequence: int = 0
    sealed_at: float = field(default_factory=time.monotonic)

    def __len__(self) -> int:
        return len(self.mutations)

    def entries(self) -> list[RowEntry]:
        """One entry per row key, in order of first appearance.

        Entries of one request may be applied in any order, so every mutation
        of a row (including a later tombstone) must travel in the same entry.
        """
        grouped: dict[bytes, RowEntry] = {}
        for m in self.mutations:
            entry = grouped.get(m.row_key)
            if entry is None:
                entry = grouped[m.row_key] = RowEntry(row_key=m.row_key)
            entry.mutations.append(m)
        return list(grouped.values())


@dataclass
class MutationOutcome:
    """Result of one row entry within a batch write."""

    index: int
    row_key: bytes
    success: bool
    failure: FailureKind | None = None
    error: str | None = None


@dataclass
class WriteResult:
    """Result of StorageWriter.write() for one batch."""

    table: str
    outcomes: list[MutationOutcome]
    attempts: int = 1
    duration_ms: int = 0

    @property
    def succeeded(self) -> list[MutationOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[MutationOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        return all(o.success for o in self.outcomes)


@dataclass
class StoredRow:
    """A row read back from a table store: latest cell per (family, qualifier)."""

    row_key: bytes
    cells: dict[tuple[str, bytes], bytes] = field(default_factory=dict)
    timestamps: dict[tuple[str, bytes], int] = field(default_factory=dict)

    def get(self, family: str, qualifier: bytes) -> bytes | None:
        return self.cells.get((family, qualifier))


@dataclass
class HeldRow:
    """Rows of one event buffered for a not-yet-confirmed slot."""

    table: str
    row_key: bytes
    version: int  # write_version for accounts, slot otherwise
    mutations: list[RowMutation]


@dataclass
class PendingSlot:
    """Tracker-owned state for a slot that has not reached a terminal status."""

    slot: int
    status: SlotStatus = SlotStatus.PROCESSED
    parent_slot: int | None = None
    held: dict[tuple[str, bytes], HeldRow] = field(default_factory=dict)
    written_keys: set[tuple[str, bytes]] = field(default_factory=set)
    first_seen_at: float = field(default_factory=time.monotonic)
    last_reported_at: float | None = None
    retry_count: int = 0

    @property
    def buffered_row_keys(self) -> set[tuple[str, bytes]]:
        return set(self.held)


@dataclass
class TrackerDecision:
    """What the coordinator must do after the tracker processed an event."""

    dispatch: list[RowMutation] = field(default_factory=list)
    tombstones: list[RowMutation] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)  # tables of rows dropped unwritten
    discard_reason: str = "dead_slot"
    held: int = 0  # events buffered until confirmation
