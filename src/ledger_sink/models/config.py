"""Configuration models for the ledger sink."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ConfirmationPolicy(str, Enum):
    """When rows of a slot may be written to storage."""

    HOLD_THEN_RELEASE = "hold_then_release"  # buffer until Confirmed
    WRITE_THEN_COMPENSATE = "write_then_compensate"  # write at once, tombstone on Dead


class StorageBackend(str, Enum):
    BIGTABLE = "bigtable"
    SQLITE = "sqlite"


@dataclass
class TableNames:
    """Physical table names for the logical tables."""

    accounts: str = "account"
    transactions: str = "tx"
    blocks: str = "block"
    slots: str = "slot"

    def all(self) -> list[str]:
        return [self.accounts, self.transactions, self.blocks, self.slots]


@dataclass
class BatchConfig:
    size: int = 1000  # mutations per batch
    max_latency: float = 1.0  # seconds since oldest buffered mutation
    max_in_flight: int = 4  # concurrent flushes before enqueue blocks
    max_cell_bytes: int = 100 * 1024 * 1024  # backend cell limit


@dataclass
class RetryConfig:
    max_retries: int = 5
    initial_backoff: float = 0.1  # seconds
    max_backoff: float = 5.0
    multiplier: float = 2.0
    max_elapsed: float = 30.0  # total seconds per batch


@dataclass
class TrackerConfig:
    stale_slot_timeout: float = 120.0  # seconds without terminal status
    sweep_interval: float = 10.0
    finalized_slot_retention: int = 10_000  # terminal statuses remembered


@dataclass
class SelectorConfig:
    """Account/transaction selection, mirroring the validator plugin config.

    An empty selector selects nothing; "*" selects everything.
    """

    accounts: list[str] = field(default_factory=lambda: ["*"])
    owners: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class StorageConfig:
    backend: StorageBackend = StorageBackend.SQLITE
    db_path: str = "~/.ledger_sink/tables.db"

    # Bigtable
    project: str = ""
    instance: str = ""
    endpoint: str = "https://bigtable.googleapis.com"
    app_profile_id: str = ""
    credential_path: str = ""  # service account JSON
    access_token: str = ""  # loaded from env var LEDGER_SINK_ACCESS_TOKEN
    timeout: float = 30.0  # seconds per RPC


@dataclass
class SinkConfig:
    """Complete sink configuration."""

    # Sink
    log_level: str = "info"
    policy: ConfirmationPolicy = ConfirmationPolicy.HOLD_THEN_RELEASE
    strict_protocol: bool = False  # re-raise protocol violations to the host
    panic_on_storage_errors: bool = False
    shutdown_timeout: float = 30.0  # seconds to drain on stop

    storage: StorageConfig = field(default_factory=StorageConfig)
    tables: TableNames = field(default_factory=TableNames)
    batch: BatchConfig = field(default_factory=BatchConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    selectors: SelectorConfig = field(default_factory=SelectorConfig)

    # Metrics
    metrics_port: int = 0  # 0 disables the HTTP exporter
