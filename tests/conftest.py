"""Shared fixtures for ledger_sink tests."""

from __future__ import annotations

import pytest
from pytest_metadata.plugin import metadata_key

from ledger_sink.codec.rows import RowCodec
from ledger_sink.models.config import (
    BatchConfig,
    ConfirmationPolicy,
    RetryConfig,
    SinkConfig,
    StorageConfig,
    TableNames,
    TrackerConfig,
)
from ledger_sink.observability.metrics import PipelineMetrics
from ledger_sink.pipeline.batcher import WriteBatcher
from ledger_sink.pipeline.coordinator import IngestionCoordinator
from ledger_sink.pipeline.tracker import SlotConfirmationTracker
from ledger_sink.pipeline.writer import StorageWriter
from ledger_sink.storage.sqlite import SQLiteTableStore

from tests.mocks import FakeClock, MockTableStore, no_sleep


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add backend info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Storage backend"] = "sqlite (:memory:) / fake Bigtable REST"
    meta["Tables"] = ", ".join(TableNames().all())


def make_test_config(**overrides) -> SinkConfig:
    """Build a SinkConfig suitable for testing."""
    defaults = dict(
        log_level="debug",
        policy=ConfirmationPolicy.HOLD_THEN_RELEASE,
        shutdown_timeout=5.0,
        storage=StorageConfig(db_path=":memory:"),
        batch=BatchConfig(size=100, max_latency=0.05, max_in_flight=4),
        retry=RetryConfig(max_retries=3, initial_backoff=0.001, max_backoff=0.01, max_elapsed=5.0),
        tracker=TrackerConfig(stale_slot_timeout=60, sweep_interval=0.05),
    )
    defaults.update(overrides)
    return SinkConfig(**defaults)


@pytest.fixture
def test_config():
    """Default SinkConfig for tests."""
    return make_test_config()


@pytest.fixture
def metrics():
    return PipelineMetrics()


@pytest.fixture
def codec():
    return RowCodec()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteTableStore."""
    s = SQLiteTableStore(":memory:", tables=TableNames().all())
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_store():
    return MockTableStore()


def build_pipeline(
    store,
    metrics: PipelineMetrics,
    policy: ConfirmationPolicy = ConfirmationPolicy.HOLD_THEN_RELEASE,
    clock=None,
    batch: BatchConfig | None = None,
    **coordinator_kwargs,
):
    """Wire codec, tracker, writer, batcher and coordinator around a store."""
    cfg = make_test_config(policy=policy)
    if batch is not None:
        cfg.batch = batch
    codec = RowCodec()
    tracker_kwargs = {"clock": clock} if clock is not None else {}
    tracker = SlotConfirmationTracker(codec, policy, cfg.tracker, metrics, **tracker_kwargs)
    writer = StorageWriter(store, cfg.retry, metrics, sleep=no_sleep)
    holder: dict = {}
    batcher = WriteBatcher(
        writer,
        batch_size=cfg.batch.size,
        max_latency=cfg.batch.max_latency,
        max_in_flight=cfg.batch.max_in_flight,
        metrics=metrics,
        on_failure=lambda batch, exc: holder["coordinator"].record_storage_failure(batch, exc),
    )
    coordinator = IngestionCoordinator(codec, tracker, batcher, metrics, **coordinator_kwargs)
    holder["coordinator"] = coordinator
    return coordinator, tracker, batcher


@pytest.fixture
async def pipeline(store, metrics):
    """Hold-then-release pipeline over the in-memory SQLite store."""
    coordinator, tracker, batcher = build_pipeline(store, metrics)
    yield coordinator, tracker, batcher
    await batcher.close(timeout=5)


@pytest.fixture
async def compensating_pipeline(store, metrics):
    """Write-then-compensate pipeline over the in-memory SQLite store."""
    coordinator, tracker, batcher = build_pipeline(
        store, metrics, ConfirmationPolicy.WRITE_THEN_COMPENSATE,
    )
    yield coordinator, tracker, batcher
    await batcher.close(timeout=5)
