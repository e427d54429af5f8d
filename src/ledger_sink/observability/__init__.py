"""Observability - metrics and events produced by the pipeline."""

from ledger_sink.observability.events import (
    BatchDispatched,
    BatchWriteFailedEvent,
    ObservabilityEvent,
    ProtocolViolationEvent,
    StaleSlot,
)
from ledger_sink.observability.metrics import PipelineMetrics

__all__ = [
    "BatchDispatched", "BatchWriteFailedEvent", "ObservabilityEvent",
    "ProtocolViolationEvent", "StaleSlot",
    "PipelineMetrics",
]
