"""BatchWriter protocol - performs the storage writes for sealed batches."""

from __future__ import annotations

from typing import Protocol

from ledger_sink.models.records import WriteBatch, WriteResult


class BatchWriter(Protocol):
    """Writes one sealed batch with retry, reporting per-mutation outcomes."""

    async def write(self, batch: WriteBatch) -> WriteResult:
        """Raises BatchWriteFailed when retries are exhausted."""
        ...
