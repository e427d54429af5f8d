"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import TypeVar

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from ledger_sink.errors import ConfigurationError
from ledger_sink.models.config import (
    ConfirmationPolicy,
    SelectorConfig,
    SinkConfig,
    StorageBackend,
)

E = TypeVar("E", bound=Enum)

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def _enum(kind: type[E], value: str, field: str) -> E:
    try:
        return kind(str(value).lower())
    except ValueError:
        choices = ", ".join(m.value for m in kind)
        raise ConfigurationError(f"{field}: {value!r} is not one of {choices}") from None


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "LEDGER_SINK_",
) -> SinkConfig:
    """Load sink configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (LEDGER_SINK_ACCESS_TOKEN, etc.)
        2. TOML config file
        3. Defaults from SinkConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                try:
                    raw = tomllib.load(f)
                except tomllib.TOMLDecodeError as exc:
                    raise ConfigurationError(f"{p}: {exc}") from exc

    cfg = SinkConfig()

    # ── Sink section ───────────────────────────────────────
    sink = raw.get("sink", {})
    if v := sink.get("log_level"):
        cfg.log_level = str(v).lower()
        if cfg.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"sink.log_level: {v!r} is not one of {', '.join(LOG_LEVELS)}"
            )
    if v := sink.get("policy"):
        cfg.policy = _enum(ConfirmationPolicy, v, "sink.policy")
    if "strict_protocol" in sink:
        cfg.strict_protocol = bool(sink["strict_protocol"])
    if "panic_on_storage_errors" in sink:
        cfg.panic_on_storage_errors = bool(sink["panic_on_storage_errors"])
    if "shutdown_timeout" in sink:
        cfg.shutdown_timeout = float(sink["shutdown_timeout"])

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("backend"):
        cfg.storage.backend = _enum(StorageBackend, v, "storage.backend")
    if v := storage.get("db_path"):
        cfg.storage.db_path = str(v)
    if v := storage.get("project"):
        cfg.storage.project = str(v)
    if v := storage.get("instance"):
        cfg.storage.instance = str(v)
    if v := storage.get("endpoint"):
        cfg.storage.endpoint = str(v)
    if v := storage.get("app_profile_id"):
        cfg.storage.app_profile_id = str(v)
    if v := storage.get("credential_path"):
        cfg.storage.credential_path = str(v)
    if v := storage.get("access_token"):
        cfg.storage.access_token = str(v)
    if "timeout" in storage:
        cfg.storage.timeout = float(storage["timeout"])

    # ── Tables section ─────────────────────────────────────
    tables = raw.get("tables", {})
    if v := tables.get("accounts"):
        cfg.tables.accounts = str(v)
    if v := tables.get("transactions"):
        cfg.tables.transactions = str(v)
    if v := tables.get("blocks"):
        cfg.tables.blocks = str(v)
    if v := tables.get("slots"):
        cfg.tables.slots = str(v)

    # ── Batch section ──────────────────────────────────────
    batch = raw.get("batch", {})
    if "size" in batch:
        cfg.batch.size = int(batch["size"])
    if "max_latency" in batch:
        cfg.batch.max_latency = float(batch["max_latency"])
    if "max_in_flight" in batch:
        cfg.batch.max_in_flight = int(batch["max_in_flight"])
    if "max_cell_bytes" in batch:
        cfg.batch.max_cell_bytes = int(batch["max_cell_bytes"])
    if cfg.batch.size < 1 or cfg.batch.max_in_flight < 1:
        raise ConfigurationError("batch.size and batch.max_in_flight must be at least 1")

    # ── Retry section ──────────────────────────────────────
    retry = raw.get("retry", {})
    if "max_retries" in retry:
        cfg.retry.max_retries = int(retry["max_retries"])
    if "initial_backoff" in retry:
        cfg.retry.initial_backoff = float(retry["initial_backoff"])
    if "max_backoff" in retry:
        cfg.retry.max_backoff = float(retry["max_backoff"])
    if "multiplier" in retry:
        cfg.retry.multiplier = float(retry["multiplier"])
    if "max_elapsed" in retry:
        cfg.retry.max_elapsed = float(retry["max_elapsed"])

    # ── Tracker section ────────────────────────────────────
    tracker = raw.get("tracker", {})
    if "stale_slot_timeout" in tracker:
        cfg.tracker.stale_slot_timeout = float(tracker["stale_slot_timeout"])
    if "sweep_interval" in tracker:
        cfg.tracker.sweep_interval = float(tracker["sweep_interval"])
    if "finalized_slot_retention" in tracker:
        cfg.tracker.finalized_slot_retention = int(tracker["finalized_slot_retention"])

    # ── Selectors ──────────────────────────────────────────
    accounts_raw = raw.get("accounts_selector", {})
    transactions_raw = raw.get("transaction_selector", {})
    defaults = SelectorConfig()
    cfg.selectors = SelectorConfig(
        accounts=list(accounts_raw.get("accounts", defaults.accounts)),
        owners=list(accounts_raw.get("owners", defaults.owners)),
        mentions=list(transactions_raw.get("mentions", defaults.mentions)),
    )

    # ── Metrics section ────────────────────────────────────
    metrics = raw.get("metrics", {})
    if "port" in metrics:
        cfg.metrics_port = int(metrics["port"])

    # ── Environment variable overrides (highest priority) ──
    if backend := os.environ.get(f"{env_prefix}BACKEND"):
        cfg.storage.backend = _enum(StorageBackend, backend, f"{env_prefix}BACKEND")
    if project := os.environ.get(f"{env_prefix}PROJECT"):
        cfg.storage.project = project
    if instance := os.environ.get(f"{env_prefix}INSTANCE"):
        cfg.storage.instance = instance
    if cred := os.environ.get(f"{env_prefix}CREDENTIAL_PATH"):
        cfg.storage.credential_path = cred
    if token := os.environ.get(f"{env_prefix}ACCESS_TOKEN"):
        cfg.storage.access_token = token
    if policy := os.environ.get(f"{env_prefix}POLICY"):
        cfg.policy = _enum(ConfirmationPolicy, policy, f"{env_prefix}POLICY")
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.storage.db_path = db_path

    # Expand ~ in paths
    if cfg.storage.db_path != ":memory:":
        cfg.storage.db_path = str(Path(cfg.storage.db_path).expanduser())
    if cfg.storage.credential_path:
        cfg.storage.credential_path = str(Path(cfg.storage.credential_path).expanduser())

    return cfg
