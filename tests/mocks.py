"""Mock implementations of storage-facing components."""

from __future__ import annotations

import asyncio

from ledger_sink.errors import PermanentStorageError, TransientStorageError
from ledger_sink.models.records import (
    EntryFailure,
    FailureKind,
    MutationOutcome,
    RowEntry,
    StoredRow,
    WriteBatch,
    WriteResult,
)


class MockTableStore:
    """Implements TableStore protocol. Scripted failures, records every call.

    `script` is consumed one item per mutate_rows call:
      - an Exception instance is raised
      - a dict {position: FailureKind} fails those entries
      - None succeeds
    Once the script is exhausted every call succeeds.
    """

    def __init__(self, script: list | None = None, delay: float = 0.0) -> None:
        self.script = list(script or [])
        self.delay = delay
        self.calls: list[tuple[str, list[RowEntry]]] = []
        self.rows: dict[tuple[str, bytes], list] = {}
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def mutate_rows(self, table: str, entries: list[RowEntry]) -> dict[int, EntryFailure]:
        self.calls.append((table, list(entries)))
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self.script.pop(0) if self.script else None
        if isinstance(step, Exception):
            raise step
        failures = {
            pos: EntryFailure(kind=kind, error=f"mock {kind.value} failure")
            for pos, kind in (step or {}).items()
        }
        for pos, entry in enumerate(entries):
            if pos not in failures:
                self.rows.setdefault((table, entry.row_key), []).extend(entry.mutations)
        return failures

    async def read_rows(self, table, start_key=None, end_key=None, limit=None) -> list[StoredRow]:
        return []

    # Test helpers

    @staticmethod
    def transient(msg: str = "unavailable") -> TransientStorageError:
        return TransientStorageError(msg)

    @staticmethod
    def permanent(msg: str = "table not found") -> PermanentStorageError:
        return PermanentStorageError(msg)

    def sent_row_keys(self, table: str | None = None) -> list[bytes]:
        return [
            entry.row_key
            for t, entries in self.calls
            if table is None or t == table
            for entry in entries
        ]


class DelayedStore:
    """Wraps a real TableStore and delays every mutate_rows call."""

    def __init__(self, inner, delay: float) -> None:
        self.inner = inner
        self.delay = delay

    async def initialize(self) -> None:
        await self.inner.initialize()

    async def close(self) -> None:
        await self.inner.close()

    async def mutate_rows(self, table: str, entries: list[RowEntry]) -> dict[int, EntryFailure]:
        await asyncio.sleep(self.delay)
        return await self.inner.mutate_rows(table, entries)

    async def read_rows(self, table, start_key=None, end_key=None, limit=None) -> list[StoredRow]:
        return await self.inner.read_rows(table, start_key, end_key, limit)


class MockWriter:
    """Implements BatchWriter protocol. Records batches, optional per-write delay."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.batches: list[WriteBatch] = []
        self.active = 0
        self.max_active = 0

    async def write(self, batch: WriteBatch) -> WriteResult:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            self.batches.append(batch)
            return WriteResult(
                table=batch.table,
                outcomes=[
                    MutationOutcome(index=i, row_key=e.row_key, success=True)
                    for i, e in enumerate(batch.entries())
                ],
            )
        finally:
            self.active -= 1

    @property
    def mutations(self):
        return [m for b in self.batches for m in b.mutations]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_delay: float) -> None:
    """Writer sleep replacement: yields without waiting."""
    await asyncio.sleep(0)


def permanent_entry(*positions: int) -> dict[int, FailureKind]:
    return {p: FailureKind.PERMANENT for p in positions}


def transient_entry(*positions: int) -> dict[int, FailureKind]:
    return {p: FailureKind.TRANSIENT for p in positions}
