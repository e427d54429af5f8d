"""Table store backends."""

from ledger_sink.storage.bigtable import BigtableTableStore
from ledger_sink.storage.sqlite import SQLiteTableStore

__all__ = ["BigtableTableStore", "SQLiteTableStore"]
