"""Storage writer - mutate RPCs with retry, backoff and a per-table circuit."""

from __future__ import annotations

import asyncio
import logging
import random
import time

from ledger_sink.errors import (
    BatchWriteFailed,
    CircuitOpenError,
    PermanentStorageError,
    TransientStorageError,
)
from ledger_sink.interfaces.store import TableStore
from ledger_sink.models.config import RetryConfig
from ledger_sink.models.records import (
    FailureKind,
    MutationOutcome,
    WriteBatch,
    WriteResult,
)
from ledger_sink.observability.metrics import PipelineMetrics

log = logging.getLogger(__name__)


class StorageWriter:
    """Writes sealed batches to a TableStore.

    Transient failures (whole request or single entries) are retried with
    exponential backoff and full jitter until max_retries or max_elapsed is
    exceeded, at which point BatchWriteFailed is raised with the still
    failing entries. Permanent entry failures are reported in the
    WriteResult and never retried. A permanent request failure opens the
    table's circuit: further writes to it fail fast until reset_circuit().

    Mutations are keyed and carry explicit timestamps, so re-sending an
    entry that was already applied has no visible effect.
    """

    def __init__(
        self,
        store: TableStore,
        retry: RetryConfig | None = None,
        metrics: PipelineMetrics | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._store = store
        self._retry = retry or RetryConfig()
        self._metrics = metrics or PipelineMetrics()
        self._sleep = sleep
        self._open_circuits: dict[str, str] = {}

    # ── Circuit breaker ────────────────────────────────────

    def is_circuit_open(self, table: str) -> bool:
        return table in self._open_circuits

    def open_circuits(self) -> dict[str, str]:
        return dict(self._open_circuits)

    def reset_circuit(self, table: str) -> None:
        """Operator intervention: allow writes to the table again."""
        if self._open_circuits.pop(table, None) is not None:
            self._metrics.circuit_open.labels(table=table).set(0)
            log.warning("Circuit for table %s reset", table)

    def _trip(self, table: str, reason: str) -> None:
        self._open_circuits[table] = reason
        self._metrics.circuit_open.labels(table=table).set(1)
        log.error("Circuit OPEN for table %s: %s", table, reason)

    # ── Write path ─────────────────────────────────────────

    def backoff(self, attempt: int) -> float:
        """Full-jitter delay before retry number `attempt` (1-based)."""
        r = self._retry
        ceiling = min(r.max_backoff, r.initial_backoff * (r.multiplier ** (attempt - 1)))
        return random.uniform(0, ceiling)

    async def write(self, batch: WriteBatch) -> WriteResult:
        table = batch.table
        if table in self._open_circuits:
            raise CircuitOpenError(
                f"writes to {table} suspended: {self._open_circuits[table]}", table,
            )

        start = time.monotonic()
        entries = batch.entries()
        outcomes: dict[int, MutationOutcome] = {}
        pending: list[int] = list(range(len(entries)))
        attempt = 0
        last_error = ""

        while pending:
            attempt += 1
            sent = [entries[i] for i in pending]
            try:
                failures = await self._store.mutate_rows(table, sent)
            except PermanentStorageError as exc:
                self._trip(table, str(exc))
                raise
            except TransientStorageError as exc:
                last_error = str(exc)
                failures = None
                log.warning(
                    "Transient failure writing %d entries to %s (attempt %d): %s",
                    len(sent), table, attempt, exc,
                )

            retry_next: list[int] = []
            for pos, idx in enumerate(pending):
                entry = entries[idx]
                failure = None if failures is None else failures.get(pos)
                if failures is None:
                    retry_next.append(idx)
                elif failure is None:
                    outcomes[idx] = MutationOutcome(index=idx, row_key=entry.row_key, success=True)
                elif failure.kind == FailureKind.PERMANENT:
                    log.error(
                        "Permanent failure for row %r in %s: %s", entry.row_key, table, failure.error,
                    )
                    outcomes[idx] = MutationOutcome(
                        index=idx, row_key=entry.row_key, success=False,
                        failure=FailureKind.PERMANENT, error=failure.error,
                    )
                else:
                    last_error = failure.error
                    retry_next.append(idx)
            pending = retry_next
            if not pending:
                break

            elapsed = time.monotonic() - start
            if attempt > self._retry.max_retries or elapsed >= self._retry.max_elapsed:
                failed = [
                    MutationOutcome(
                        index=i, row_key=entries[i].row_key, success=False,
                        failure=FailureKind.TRANSIENT, error=last_error,
                    )
                    for i in pending
                ]
                raise BatchWriteFailed(
                    f"{len(failed)} of {len(entries)} entries to {table} still failing after "
                    f"{attempt} attempts ({elapsed:.1f}s): {last_error}",
                    table,
                    failed=failed,
                    attempts=attempt,
                )

            self._metrics.write_retries.labels(table=table).inc()
            delay = min(self.backoff(attempt), max(0.0, self._retry.max_elapsed - elapsed))
            await self._sleep(delay)

        result = WriteResult(
            table=table,
            outcomes=[outcomes[i] for i in sorted(outcomes)],
            attempts=attempt,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        self._metrics.mutations_written.labels(table=table).inc(len(result.succeeded))
        return result
