"""Data models for the ledger sink."""

from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    LedgerEvent,
    RowEvent,
    SlotStatus,
    SlotStatusEvent,
    TransactionEvent,
    TransactionStatus,
)
from ledger_sink.models.records import (
    EntryFailure,
    FailureKind,
    HeldRow,
    MutationKind,
    MutationOutcome,
    PendingSlot,
    RowEntry,
    RowMutation,
    StoredRow,
    TrackerDecision,
    WriteBatch,
    WriteResult,
)
from ledger_sink.models.config import (
    BatchConfig,
    ConfirmationPolicy,
    RetryConfig,
    SelectorConfig,
    SinkConfig,
    StorageBackend,
    StorageConfig,
    TableNames,
    TrackerConfig,
)

__all__ = [
    "AccountUpdateEvent", "BlockMetadataEvent", "LedgerEvent", "RowEvent",
    "SlotStatus", "SlotStatusEvent", "TransactionEvent", "TransactionStatus",
    "EntryFailure", "FailureKind", "HeldRow", "MutationKind", "MutationOutcome",
    "PendingSlot", "RowEntry", "RowMutation", "StoredRow", "TrackerDecision",
    "WriteBatch", "WriteResult",
    "BatchConfig", "ConfirmationPolicy", "RetryConfig", "SelectorConfig",
    "SinkConfig", "StorageBackend", "StorageConfig", "TableNames", "TrackerConfig",
]
