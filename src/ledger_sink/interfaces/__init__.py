"""Protocol interfaces for the ledger sink components."""

from ledger_sink.interfaces.selector import AccountFilter, TransactionFilter
from ledger_sink.interfaces.source import EventSource
from ledger_sink.interfaces.store import TableStore
from ledger_sink.interfaces.writer import BatchWriter

__all__ = [
    "AccountFilter", "TransactionFilter",
    "EventSource",
    "TableStore",
    "BatchWriter",
]
