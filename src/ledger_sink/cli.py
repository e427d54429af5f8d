"""CLI entry point for the ledger sink."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from ledger_sink.codec.keys import account_range, slot_range
from ledger_sink.codec.rows import RowCodec
from ledger_sink.config import load_config
from ledger_sink.errors import ConfigurationError, EncodeError, LedgerSinkError
from ledger_sink.models.config import StorageBackend
from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    LedgerEvent,
    SlotStatusEvent,
    TransactionEvent,
)
from ledger_sink.plugin import build_store, run_replay

COUNTERS = (
    "ledger_sink_events_received_total",
    "ledger_sink_events_dispatched_total",
    "ledger_sink_events_discarded_total",
    "ledger_sink_events_held_total",
    "ledger_sink_mutations_written_total",
    "ledger_sink_tombstones_total",
    "ledger_sink_write_retries_total",
    "ledger_sink_batch_failures_total",
    "ledger_sink_protocol_violations_total",
    "ledger_sink_stale_slots_total",
    "ledger_sink_unflushed_batches",
)


def _load(ctx: click.Context):
    """Load config or exit with the configuration error.

    sink.log_level applies unless -v asked for debug output.
    """
    try:
        cfg = load_config(ctx.obj["config_path"])
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _mask(secret: str) -> str:
    return "***configured***" if secret else "(not set)"


def _describe(event: LedgerEvent) -> str:
    if isinstance(event, AccountUpdateEvent):
        return (
            f"slot={event.slot} account={event.pubkey.hex()[:16]} owner={event.owner.hex()[:16]} "
            f"lamports={event.lamports} data={len(event.data)}B write_version={event.write_version}"
        )
    if isinstance(event, TransactionEvent):
        status = "ok" if event.status.success else f"err({event.status.error_code})"
        return (
            f"slot={event.slot} index={event.index_in_block} sig={event.signature.hex()[:16]} "
            f"status={status} accounts={len(event.accounts_touched)} vote={event.is_vote}"
        )
    if isinstance(event, BlockMetadataEvent):
        return (
            f"slot={event.slot} blockhash={event.blockhash.hex()[:16]} "
            f"time={event.block_time} height={event.block_height}"
        )
    if isinstance(event, SlotStatusEvent):
        return f"slot={event.slot} parent={event.parent_slot} status={event.status.value}"
    return repr(event)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """ledger-sink - persist validator notifications into a wide-column store."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Replay ─────────────────────────────────────────────


@cli.command()
@click.argument("file", type=click.File("r"), default="-")
@click.pass_context
def replay(ctx: click.Context, file) -> None:
    """Stream JSON-lines notifications from FILE (or stdin) into storage."""
    cfg = _load(ctx)
    try:
        plugin = asyncio.run(run_replay(cfg, file))
    except LedgerSinkError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo("Counters:")
    for metric in plugin.metrics.registry.collect():
        for sample in metric.samples:
            if sample.name not in COUNTERS:
                continue
            labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
            click.echo(f"  {sample.name}{{{labels}}} {sample.value:g}")


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the effective sink configuration."""
    cfg = _load(ctx)
    st = cfg.storage
    click.echo(f"Backend:      {st.backend.value}")
    if st.backend == StorageBackend.SQLITE:
        click.echo(f"DB path:      {st.db_path}")
    else:
        click.echo(f"Project:      {st.project or '(not set)'}")
        click.echo(f"Instance:     {st.instance or '(not set)'}")
        click.echo(f"Endpoint:     {st.endpoint}")
        click.echo(f"App profile:  {st.app_profile_id or '(default)'}")
        click.echo(f"Credentials:  {st.credential_path or '(not set)'}")
        click.echo(f"Token:        {_mask(st.access_token)}")
    click.echo(f"Tables:       {', '.join(cfg.tables.all())}")
    click.echo(f"Policy:       {cfg.policy.value}")
    click.echo(f"Batch:        {cfg.batch.size} mutations / {cfg.batch.max_latency}s, "
               f"{cfg.batch.max_in_flight} in flight")
    click.echo(f"Retry:        {cfg.retry.max_retries} retries, {cfg.retry.max_elapsed}s max")
    click.echo(f"Stale after:  {cfg.tracker.stale_slot_timeout}s")
    click.echo(f"Accounts:     {', '.join(cfg.selectors.accounts) or '(none)'}")
    click.echo(f"Owners:       {', '.join(cfg.selectors.owners) or '(none)'}")
    click.echo(f"Mentions:     {', '.join(cfg.selectors.mentions) or '(none)'}")
    click.echo(f"Metrics port: {cfg.metrics_port or '(disabled)'}")


# ── Scan ───────────────────────────────────────────────


@cli.command()
@click.argument("table", type=click.Choice(["accounts", "transactions", "blocks", "slots"]))
@click.option("--start-slot", type=int, default=None, help="First slot (inclusive)")
@click.option("--end-slot", type=int, default=None, help="Last slot (inclusive)")
@click.option("--account", "account_hex", default=None, help="Account pubkey (hex), accounts table only")
@click.option("--limit", type=int, default=20, show_default=True, help="Maximum rows")
@click.pass_context
def scan(
    ctx: click.Context,
    table: str,
    start_slot: int | None,
    end_slot: int | None,
    account_hex: str | None,
    limit: int,
) -> None:
    """Read rows of TABLE from the configured backend and print them."""
    cfg = _load(ctx)
    physical = getattr(cfg.tables, table)
    codec = RowCodec(cfg.tables, max_cell_bytes=cfg.batch.max_cell_bytes)

    try:
        if table == "accounts":
            if start_slot is not None or end_slot is not None:
                raise EncodeError("account rows are keyed by pubkey, use --account")
            if account_hex:
                start_key, end_key = account_range(bytes.fromhex(account_hex))
            else:
                start_key, end_key = None, None
        else:
            start_key, end_key = slot_range(start_slot, end_slot)
    except (EncodeError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    async def _scan():
        store = build_store(cfg)
        await store.initialize()
        try:
            return await store.read_rows(physical, start_key, end_key, limit)
        finally:
            await store.close()

    try:
        rows = asyncio.run(_scan())
    except LedgerSinkError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not rows:
        click.echo("No rows.")
        return
    for row in rows:
        try:
            click.echo(_describe(codec.decode(physical, row)))
        except EncodeError as exc:
            click.echo(f"{row.row_key.decode(errors='replace')}: undecodable ({exc})")
    click.echo(f"\n{len(rows)} rows")


if __name__ == "__main__":
    cli()
