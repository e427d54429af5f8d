"""Pipeline metrics - Prometheus collectors plus observability event fan-out."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from ledger_sink.observability.events import ObservabilityEvent

log = logging.getLogger(__name__)

BATCH_SIZE_BUCKETS = (1, 10, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

Listener = Callable[[ObservabilityEvent], None]


class PipelineMetrics:
    """Counters, histograms and events for one pipeline instance.

    Each instance owns its CollectorRegistry so several pipelines (and tests)
    can coexist in one process.
    """

    def __init__(self, registry: CollectorRegistry | None = None, recent: int = 256) -> None:
        self.registry = registry or CollectorRegistry()
        r = self.registry

        self.events_received = Counter(
            "ledger_sink_events_received", "Notifications received", ["category"], registry=r,
        )
        self.events_dispatched = Counter(
            "ledger_sink_events_dispatched", "Events whose rows were handed to the batcher",
            ["category"], registry=r,
        )
        self.events_discarded = Counter(
            "ledger_sink_events_discarded", "Events dropped without writing",
            ["category", "reason"], registry=r,
        )
        self.events_held = Counter(
            "ledger_sink_events_held", "Events buffered until their slot is confirmed",
            ["category"], registry=r,
        )
        self.mutations_written = Counter(
            "ledger_sink_mutations_written", "Row entries acknowledged by storage",
            ["table"], registry=r,
        )
        self.tombstones = Counter(
            "ledger_sink_tombstones", "Compensating row deletions enqueued", ["table"], registry=r,
        )
        self.write_retries = Counter(
            "ledger_sink_write_retries", "Storage write retry attempts", ["table"], registry=r,
        )
        self.batch_failures = Counter(
            "ledger_sink_batch_failures", "Batches that could not be written",
            ["table", "kind"], registry=r,
        )
        self.protocol_violations = Counter(
            "ledger_sink_protocol_violations", "Impossible slot transitions from the host",
            registry=r,
        )
        self.stale_slots = Counter(
            "ledger_sink_stale_slots", "Stale slot reports", registry=r,
        )
        self.batch_size = Histogram(
            "ledger_sink_batch_size", "Mutations per dispatched batch", ["table"],
            buckets=BATCH_SIZE_BUCKETS, registry=r,
        )
        self.flush_latency = Histogram(
            "ledger_sink_flush_seconds", "Time to write one batch", ["table"], registry=r,
        )
        self.in_flight = Gauge(
            "ledger_sink_batches_in_flight", "Batches currently being written", registry=r,
        )
        self.pending_slots = Gauge(
            "ledger_sink_pending_slots", "Slots without a terminal status", registry=r,
        )
        self.unflushed_batches = Gauge(
            "ledger_sink_unflushed_batches", "Batches abandoned at shutdown", registry=r,
        )
        self.circuit_open = Gauge(
            "ledger_sink_circuit_open", "1 while writes to a table are refused", ["table"],
            registry=r,
        )

        self._listeners: list[Listener] = []
        self.recent: deque[ObservabilityEvent] = deque(maxlen=recent)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: ObservabilityEvent) -> None:
        """Record an observability event and hand it to every listener."""
        self.recent.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                log.exception("Observability listener failed for %s", type(event).__name__)

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a sample, 0.0 if it was never touched."""
        return self.registry.get_sample_value(name, labels or {}) or 0.0

    def serve(self, port: int) -> None:
        """Expose the registry over HTTP for Prometheus scraping."""
        start_http_server(port, registry=self.registry)
        log.info("Metrics exporter listening on :%d", port)
