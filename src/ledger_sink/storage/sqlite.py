"""SQLite implementation of the TableStore protocol.

A local stand-in for the wide-column backend: one `cells` table keyed by
(table, row key, family, qualifier). Each cell keeps its latest value by
timestamp (a write with an older timestamp is ignored), matching how the
sink reads the backend. Row keys are BLOBs, so SQLite's memcmp ordering
gives the same lexicographic scan order as the cloud backend.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from ledger_sink.errors import PermanentStorageError, TransientStorageError
from ledger_sink.models.records import (
    EntryFailure,
    FailureKind,
    MutationKind,
    RowEntry,
    StoredRow,
)

SCHEMA = """
-- One row per (table, row key, column)
CREATE TABLE IF NOT EXISTS cells (
    table_name TEXT NOT NULL,
    row_key BLOB NOT NULL,
    family TEXT NOT NULL,
    qualifier BLOB NOT NULL,
    ts INTEGER NOT NULL,
    value BLOB NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (table_name, row_key, family, qualifier)
);
"""

UPSERT_CELL = (
    "INSERT INTO cells (table_name, row_key, family, qualifier, ts, value, updated_at)"
    " VALUES (?, ?, ?, ?, ?, ?, ?)"
    " ON CONFLICT(table_name, row_key, family, qualifier) DO UPDATE SET"
    " ts=excluded.ts, value=excluded.value, updated_at=excluded.updated_at"
    " WHERE excluded.ts >= cells.ts"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteTableStore:
    """aiosqlite-backed implementation of the TableStore protocol."""

    def __init__(
        self,
        db_path: str,
        tables: list[str] | None = None,
        max_cell_bytes: int | None = None,
    ) -> None:
        self._db_path = db_path
        self._tables = set(tables) if tables else None
        self._max_cell_bytes = max_cell_bytes
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Writes ─────────────────────────────────────────────

    def _check_table(self, table: str) -> None:
        if self._tables is not None and table not in self._tables:
            raise PermanentStorageError(f"table {table} does not exist", table)

    def _validate(self, entry: RowEntry) -> str | None:
        if not entry.row_key:
            return "empty row key"
        for m in entry.mutations:
            if m.kind != MutationKind.SET_CELL:
                continue
            if not m.family:
                return "missing column family"
            if self._max_cell_bytes is not None and len(m.value) > self._max_cell_bytes:
                return f"cell of {len(m.value)} bytes exceeds {self._max_cell_bytes}"
        return None

    async def mutate_rows(self, table: str, entries: list[RowEntry]) -> dict[int, EntryFailure]:
        self._check_table(table)
        failures: dict[int, EntryFailure] = {}
        now = _now()
        async with self._write_lock:
            return await self._apply(table, entries, failures, now)

    async def _apply(
        self, table: str, entries: list[RowEntry], failures: dict[int, EntryFailure], now: str,
    ) -> dict[int, EntryFailure]:
        try:
            for index, entry in enumerate(entries):
                error = self._validate(entry)
                if error is not None:
                    failures[index] = EntryFailure(kind=FailureKind.PERMANENT, error=error)
                    continue
                for m in entry.mutations:
                    if m.kind == MutationKind.DELETE_ROW:
                        await self.db.execute(
                            "DELETE FROM cells WHERE table_name=? AND row_key=?",
                            (table, entry.row_key),
                        )
                    else:
                        await self.db.execute(
                            UPSERT_CELL,
                            (table, entry.row_key, m.family, m.qualifier, m.timestamp, m.value, now),
                        )
            await self.db.commit()
        except sqlite3.OperationalError as exc:
            await self.db.rollback()
            # "database is locked" and friends
            raise TransientStorageError(str(exc), table) from exc
        except sqlite3.DatabaseError as exc:
            await self.db.rollback()
            raise PermanentStorageError(str(exc), table) from exc
        return failures

    # ── Reads ──────────────────────────────────────────────

    async def read_rows(
        self,
        table: str,
        start_key: bytes | None = None,
        end_key: bytes | None = None,
        limit: int | None = None,
    ) -> list[StoredRow]:
        self._check_table(table)
        query = "SELECT row_key, family, qualifier, value, ts FROM cells WHERE table_name=?"
        params: list = [table]
        if start_key is not None:
            query += " AND row_key >= ?"
            params.append(start_key)
        if end_key is not None:
            query += " AND row_key < ?"
            params.append(end_key)
        query += " ORDER BY row_key, family, qualifier"

        rows: list[StoredRow] = []
        async with self.db.execute(query, params) as cur:
            async for r in cur:
                key = bytes(r["row_key"])
                if not rows or rows[-1].row_key != key:
                    if limit is not None and len(rows) >= limit:
                        break
                    rows.append(StoredRow(row_key=key))
                column = (r["family"], bytes(r["qualifier"]))
                rows[-1].cells[column] = bytes(r["value"])
                rows[-1].timestamps[column] = r["ts"]
        return rows

    async def count_cells(self, table: str | None = None) -> int:
        if table is None:
            query, params = "SELECT COUNT(*) AS c FROM cells", ()
        else:
            query, params = "SELECT COUNT(*) AS c FROM cells WHERE table_name=?", (table,)
        async with self.db.execute(query, params) as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0
