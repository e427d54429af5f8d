"""TableStore protocol - the wide-column backend as seen by the sink."""

from __future__ import annotations

from typing import Protocol

from ledger_sink.models.records import EntryFailure, RowEntry, StoredRow


class TableStore(Protocol):
    """Key-ordered table store with keyed, timestamped cell writes."""

    async def initialize(self) -> None:
        """Open connections / verify access."""
        ...

    async def close(self) -> None:
        ...

    async def mutate_rows(
        self, table: str, entries: list[RowEntry]
    ) -> dict[int, EntryFailure]:
        """Apply entries in order. Returns failures keyed by entry index.

        Raises TransientStorageError / PermanentStorageError when the whole
        request fails.
        """
        ...

    async def read_rows(
        self,
        table: str,
        start_key: bytes | None = None,
        end_key: bytes | None = None,
        limit: int | None = None,
    ) -> list[StoredRow]:
        """Scan rows in key order over [start_key, end_key)."""
        ...
