"""Write batcher - per-table buffers, flush triggers and backpressure."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable

from ledger_sink.errors import StorageError
from ledger_sink.interfaces.writer import BatchWriter
from ledger_sink.models.records import RowMutation, WriteBatch, WriteResult
from ledger_sink.observability.events import BatchDispatched, BatchWriteFailedEvent
from ledger_sink.observability.metrics import PipelineMetrics

log = logging.getLogger(__name__)

FailureCallback = Callable[[WriteBatch, Exception], None]


class WriteBatcher:
    """Accumulates mutations per table and hands sealed batches to the writer.

    A table's buffer is sealed when it reaches `batch_size` mutations or when
    its oldest mutation has waited `max_latency` seconds. Sealing swaps in a
    fresh buffer and starts a write task without waiting for it.

    At most `max_in_flight` sealed batches exist at once; sealing another
    blocks the caller until one completes. Batches of the same table are
    written in the order they were sealed.
    """

    def __init__(
        self,
        writer: BatchWriter,
        batch_size: int = 1000,
        max_latency: float = 1.0,
        max_in_flight: int = 4,
        metrics: PipelineMetrics | None = None,
        on_failure: FailureCallback | None = None,
    ) -> None:
        if batch_size < 1 or max_in_flight < 1:
            raise ValueError("batch_size and max_in_flight must be >= 1")
        self._writer = writer
        self._batch_size = batch_size
        self._max_latency = max_latency
        self._metrics = metrics or PipelineMetrics()
        self._on_failure = on_failure

        self._buffers: dict[str, list[RowMutation]] = {}
        self._oldest: dict[str, float] = {}
        self._slots = asyncio.Semaphore(max_in_flight)
        self._tails: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._sequence = 0
        self._timer: asyncio.Task | None = None
        self._closed = False

    # ── Lifecycle ──────────────────────────────────────────

    def start(self) -> None:
        """Start the latency flush timer."""
        if self._timer is None:
            self._timer = asyncio.create_task(self._timer_loop(), name="batcher-timer")

    async def drain(self, timeout: float | None = None) -> int:
        """Flush every buffer and wait for in-flight batches.

        Returns the number of batches still unfinished when the timeout hit.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            await asyncio.wait_for(self.flush(), timeout)
        except asyncio.TimeoutError:
            log.warning("Timed out sealing buffered mutations during drain")
        pending = set(self._tasks)
        if pending:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, pending = await asyncio.wait(pending, timeout=remaining)
        return len(pending) + sum(1 for buf in self._buffers.values() if buf)

    async def close(self, timeout: float | None = None) -> int:
        """Stop the timer and drain. Cancels whatever is still in flight.

        Returns the number of abandoned batches (also exported as the
        unflushed_batches gauge).
        """
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            await asyncio.gather(self._timer, return_exceptions=True)
            self._timer = None

        unflushed = await self.drain(timeout)
        if unflushed:
            log.warning("Abandoning %d unflushed batches at shutdown", unflushed)
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._metrics.unflushed_batches.set(unflushed)
        return unflushed

    # ── Enqueue / flush ────────────────────────────────────

    async def enqueue(self, mutation: RowMutation) -> None:
        """Append to the table buffer; blocks only under backpressure."""
        await self.enqueue_many([mutation])

    async def enqueue_many(self, mutations: Iterable[RowMutation]) -> None:
        """Append every mutation before sealing anything.

        No other caller can run between the appends, so the mutations of one
        event stay contiguous and ahead of anything enqueued later (such as
        a tombstone for the same row). A buffer may grow past batch_size by
        the size of one call.
        """
        if self._closed:
            raise RuntimeError("batcher is closed")
        full: list[str] = []
        now = time.monotonic()
        for m in mutations:
            buf = self._buffers.setdefault(m.table, [])
            if not buf:
                self._oldest[m.table] = now
            buf.append(m)
            if len(buf) >= self._batch_size and m.table not in full:
                full.append(m.table)
        for table in full:
            await self._seal(table)

    async def flush(self, table: str | None = None) -> None:
        """Seal the buffer of `table` (or of every table)."""
        tables = [table] if table is not None else list(self._buffers)
        for t in tables:
            await self._seal(t)

    def buffered(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._buffers.get(table, []))
        return sum(len(b) for b in self._buffers.values())

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _seal(self, table: str) -> None:
        await self._slots.acquire()
        batch_mutations = self._buffers.pop(table, [])
        self._oldest.pop(table, None)
        if not batch_mutations:
            self._slots.release()
            return

        self._sequence += 1
        batch = WriteBatch(table=table, mutations=batch_mutations, sequence=self._sequence)
        prev = self._tails.get(table)
        task = asyncio.create_task(self._write(batch, prev), name=f"write-{table}-{batch.sequence}")
        self._tails[table] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self._metrics.in_flight.inc()
        self._metrics.batch_size.labels(table=table).observe(len(batch))
        self._metrics.emit(BatchDispatched(table=table, size=len(batch), sequence=batch.sequence))
        log.debug("Dispatched batch #%d: %d mutations to %s", batch.sequence, len(batch), table)

    async def _write(self, batch: WriteBatch, prev: asyncio.Task | None) -> WriteResult | None:
        try:
            if prev is not None and not prev.done():
                await asyncio.wait({prev})
            start = time.monotonic()
            try:
                result = await self._writer.write(batch)
            except StorageError as exc:
                self._report_failure(batch, exc, len(batch), type(exc).__name__)
                return None
            except Exception as exc:
                log.exception("Unexpected error writing batch #%d to %s", batch.sequence, batch.table)
                self._report_failure(batch, exc, len(batch), "unexpected")
                return None

            self._metrics.flush_latency.labels(table=batch.table).observe(time.monotonic() - start)
            if not result.ok:
                failed = result.failed
                self._report_failure(
                    batch,
                    StorageError(f"{len(failed)} rows rejected: {failed[0].error}", batch.table),
                    len(failed),
                    "permanent_entry",
                )
            return result
        finally:
            self._metrics.in_flight.dec()
            self._slots.release()

    def _report_failure(self, batch: WriteBatch, exc: Exception, failed: int, kind: str) -> None:
        log.error(
            "Batch #%d to %s failed (%d of %d mutations): %s",
            batch.sequence, batch.table, failed, len(batch), exc,
        )
        self._metrics.batch_failures.labels(table=batch.table, kind=kind).inc()
        self._metrics.emit(BatchWriteFailedEvent(
            table=batch.table, size=len(batch), failed=failed, error=str(exc),
        ))
        if self._on_failure is not None:
            self._on_failure(batch, exc)

    # ── Latency trigger ────────────────────────────────────

    async def _timer_loop(self) -> None:
        tick = min(1.0, max(0.01, self._max_latency / 4))
        while True:
            await asyncio.sleep(tick)
            now = time.monotonic()
            due = [t for t, oldest in self._oldest.items() if now - oldest >= self._max_latency]
            for table in due:
                await self._seal(table)
