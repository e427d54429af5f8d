"""Host-facing plugin wiring, lifecycle and the CLI."""

from __future__ import annotations

import logging

import pytest
from click.testing import CliRunner

from ledger_sink.cli import cli
from ledger_sink.errors import ConfigurationError
from ledger_sink.models.config import SelectorConfig, StorageBackend, StorageConfig
from ledger_sink.models.events import SlotStatus
from ledger_sink.plugin import LedgerSinkPlugin, build_store
from ledger_sink.source.jsonl import JsonLinesSource
from ledger_sink.storage.bigtable import BigtableTableStore
from ledger_sink.storage.sqlite import SQLiteTableStore

from tests.conftest import make_test_config
from tests.factories import (
    account_line,
    make_account_event,
    make_block_event,
    make_slot_event,
    make_transaction_event,
    slot_line,
)


@pytest.fixture
async def plugin():
    p = LedgerSinkPlugin(make_test_config())
    await p.start()
    yield p
    await p.stop()


# ── Store selection ──────────────────────────────────────────────


def test_build_store_sqlite_by_default():
    assert isinstance(build_store(make_test_config()), SQLiteTableStore)


def test_build_store_bigtable_with_token():
    cfg = make_test_config(storage=StorageConfig(
        backend=StorageBackend.BIGTABLE, project="p", instance="i", access_token="tok",
    ))
    assert isinstance(build_store(cfg), BigtableTableStore)


@pytest.mark.parametrize("storage, message", [
    (StorageConfig(backend=StorageBackend.BIGTABLE, access_token="tok"), "project"),
    (StorageConfig(backend=StorageBackend.BIGTABLE, project="p", instance="i"), "credential_path"),
    (StorageConfig(backend=StorageBackend.BIGTABLE, project="p", instance="i",
                   credential_path="/nonexistent/sa.json"), "credential file"),
])
def test_build_store_bigtable_misconfigured(storage, message):
    with pytest.raises(ConfigurationError, match=message):
        build_store(make_test_config(storage=storage))


# ── Lifecycle and host callbacks ─────────────────────────────────


async def test_start_and_stop(plugin):
    assert plugin.running
    assert await plugin.stop() == 0
    assert not plugin.running
    # second stop is a no-op
    assert await plugin.stop() == 0


async def test_host_callbacks_persist_confirmed_slot(plugin):
    account = make_account_event(slot=10, lamports=7)

    await plugin.update_slot_status(make_slot_event(10, SlotStatus.PROCESSED, parent_slot=9))
    await plugin.update_account(account)
    await plugin.notify_transaction(make_transaction_event(slot=10))
    await plugin.notify_block_metadata(make_block_event(slot=10))
    await plugin.update_slot_status(make_slot_event(10, SlotStatus.ROOTED))
    await plugin.batcher.drain(timeout=5)

    for table in ("account", "tx", "block", "slot"):
        assert len(await plugin.store.read_rows(table)) == 1
    rows = await plugin.store.read_rows("account")
    assert plugin.codec.decode("account", rows[0]) == account


async def test_end_of_startup_flushes_snapshot(plugin):
    await plugin.update_account(make_account_event(slot=1, is_startup=True))
    await plugin.notify_end_of_startup()
    await plugin.batcher.drain(timeout=5)

    assert len(await plugin.store.read_rows("account")) == 1


def test_notifications_enabled_follow_selectors():
    everything = LedgerSinkPlugin(make_test_config())
    assert everything.account_data_notifications_enabled()
    assert everything.transaction_notifications_enabled()

    nothing = LedgerSinkPlugin(make_test_config(
        selectors=SelectorConfig(accounts=[], owners=[], mentions=[]),
    ))
    assert not nothing.account_data_notifications_enabled()
    assert not nothing.transaction_notifications_enabled()


# ── Replay ───────────────────────────────────────────────────────


REPLAY = [
    slot_line(10, "processed", parent_slot=9),
    account_line(make_account_event(slot=10, lamports=7)),
    slot_line(10, "confirmed"),
    slot_line(11, "processed", parent_slot=10),
    account_line(make_account_event(slot=11, lamports=8, write_version=2)),
    slot_line(11, "dead"),
    slot_line(10, "rooted"),
]


async def test_replay_feeds_every_event(plugin):
    count = await plugin.replay(JsonLinesSource(REPLAY))
    await plugin.batcher.drain(timeout=5)

    assert count == len(REPLAY)
    rows = await plugin.store.read_rows("account")
    assert [plugin.codec.decode("account", r).lamports for r in rows] == [7]


async def test_request_stop_interrupts_replay(plugin):
    plugin.request_stop()
    assert await plugin.replay(JsonLinesSource(REPLAY)) == 0


# ── CLI ──────────────────────────────────────────────────────────


@pytest.fixture
def cli_config(tmp_path, monkeypatch):
    for name in ("BACKEND", "PROJECT", "INSTANCE", "CREDENTIAL_PATH", "ACCESS_TOKEN",
                 "POLICY", "DB_PATH"):
        monkeypatch.delenv(f"LEDGER_SINK_{name}", raising=False)
    path = tmp_path / "sink.toml"
    path.write_text(
        f'[storage]\ndb_path = "{tmp_path / "tables.db"}"\n'
        "[batch]\nmax_latency = 0.05\n"
    )
    return str(path)


def test_cli_replay_then_scan(cli_config, tmp_path):
    stream = tmp_path / "stream.jsonl"
    stream.write_text("\n".join(REPLAY) + "\n")
    runner = CliRunner()

    result = runner.invoke(cli, ["-c", cli_config, "replay", str(stream)])
    assert result.exit_code == 0, result.output
    assert "ledger_sink_events_received_total{category=account} 2" in result.output

    result = runner.invoke(cli, ["-c", cli_config, "scan", "accounts"])
    assert result.exit_code == 0, result.output
    assert "lamports=7" in result.output
    assert "1 rows" in result.output

    result = runner.invoke(cli, ["-c", cli_config, "scan", "slots", "--start-slot", "10"])
    assert result.exit_code == 0, result.output
    assert "slot=10 parent=9 status=rooted" in result.output


def test_cli_status_masks_token(cli_config, monkeypatch):
    monkeypatch.setenv("LEDGER_SINK_BACKEND", "bigtable")
    monkeypatch.setenv("LEDGER_SINK_ACCESS_TOKEN", "ya29.secret")

    result = CliRunner().invoke(cli, ["-c", cli_config, "status"])

    assert result.exit_code == 0, result.output
    assert "ya29.secret" not in result.output
    assert "***configured***" in result.output


def test_cli_reports_configuration_errors(cli_config, monkeypatch):
    monkeypatch.setenv("LEDGER_SINK_POLICY", "sometimes")

    result = CliRunner().invoke(cli, ["-c", cli_config, "status"])

    assert result.exit_code == 1
    assert "sometimes" in result.output


@pytest.fixture
def root_level():
    root = logging.getLogger()
    level = root.level
    yield root
    root.setLevel(level)


def test_cli_applies_configured_log_level(cli_config, root_level):
    with open(cli_config, "a") as fh:
        fh.write('[sink]\nlog_level = "warning"\n')

    result = CliRunner().invoke(cli, ["-c", cli_config, "status"])
    assert result.exit_code == 0, result.output
    assert root_level.level == logging.WARNING

    # -v keeps debug output
    root_level.setLevel(logging.DEBUG)
    result = CliRunner().invoke(cli, ["-v", "-c", cli_config, "status"])
    assert result.exit_code == 0, result.output
    assert root_level.level == logging.DEBUG
