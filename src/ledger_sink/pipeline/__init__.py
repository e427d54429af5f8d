"""Ingestion-to-storage pipeline."""

from ledger_sink.pipeline.batcher import WriteBatcher
from ledger_sink.pipeline.coordinator import IngestionCoordinator
from ledger_sink.pipeline.tracker import SlotConfirmationTracker
from ledger_sink.pipeline.writer import StorageWriter

__all__ = [
    "IngestionCoordinator",
    "SlotConfirmationTracker",
    "StorageWriter",
    "WriteBatcher",
]
