"""Pipeline metrics: listener fan-out and the recent-events window."""

from __future__ import annotations

import logging

from ledger_sink.models.config import TrackerConfig
from ledger_sink.observability.events import BatchDispatched, StaleSlot
from ledger_sink.observability.metrics import PipelineMetrics
from ledger_sink.pipeline.batcher import WriteBatcher
from ledger_sink.pipeline.tracker import SlotConfirmationTracker

from tests.factories import make_account_event
from tests.mocks import MockWriter


async def test_listeners_receive_pipeline_events(metrics, codec, clock):
    received = []
    metrics.subscribe(received.append)

    batcher = WriteBatcher(MockWriter(), batch_size=1, max_latency=60, metrics=metrics)
    await batcher.enqueue(codec.encode(make_account_event(slot=7))[0])
    await batcher.drain(timeout=5)

    tracker = SlotConfirmationTracker(
        codec, config=TrackerConfig(stale_slot_timeout=10), metrics=metrics, clock=clock,
    )
    event = make_account_event(slot=8)
    await tracker.admit(event, codec.encode(event))
    clock.advance(11)
    await tracker.sweep()

    assert [type(e) for e in received] == [BatchDispatched, StaleSlot]
    assert received[0].table == "account"
    assert received[1].slot == 8
    assert list(metrics.recent) == received


def test_failing_listener_is_logged_and_isolated(caplog):
    metrics = PipelineMetrics()
    received = []

    def broken(event):
        raise RuntimeError("listener down")

    metrics.subscribe(broken)
    metrics.subscribe(received.append)
    event = StaleSlot(slot=1, status="processed", age_seconds=200.0, reports=1)

    with caplog.at_level(logging.ERROR, logger="ledger_sink.observability.metrics"):
        metrics.emit(event)

    assert received == [event]
    assert list(metrics.recent) == [event]
    assert "Observability listener failed for StaleSlot" in caplog.text


def test_recent_window_is_bounded():
    metrics = PipelineMetrics(recent=2)
    for slot in range(3):
        metrics.emit(StaleSlot(slot=slot, status="processed", age_seconds=1.0, reports=1))

    assert [e.slot for e in metrics.recent] == [1, 2]
