# SPDX-License-Identifier: Apache-2.0
"""Bounded, retrying write sink in front of the time-series store.

Records enter a fixed-size queue and are written by a small pool of worker
tasks. ``submit`` never blocks: a full queue is reported to the caller, who
is expected to wait for headroom before pulling more input.

Per record: Queued -> Attempting -> Success | Requeued | Dropped.
Requeued records go back to Attempting after an exponential backoff.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence, Set

from .config import SinkConfig
from .encoder import WriteRecord
from .metrics import QUEUE_DEPTH, RECORDS_DROPPED, RECORDS_WRITTEN, WRITE_LATENCY, WRITE_RETRIES
from .store import FatalWriteError, RetryableWriteError

log = logging.getLogger(__name__)


class SinkClosedError(RuntimeError):
    """Raised by ``submit`` once the sink is shutting down."""


class RecordWriter(Protocol):
    async def start(self) -> None: ...

    async def write(self, record: WriteRecord) -> None: ...

    async def close(self) -> None: ...


class WriteResult(enum.Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class WriteOutcome:
    record: WriteRecord
    attempt: int
    result: WriteResult
    error: Optional[BaseException] = None


@dataclass(slots=True)
class SinkStats:
    accepted: int = 0
    rejected: int = 0
    written: int = 0
    retried: int = 0
    dropped_fatal: int = 0
    dropped_exhausted: int = 0
    dropped_shutdown: int = 0


class _Batch:
    """Tracks the records of one submit call until all are terminal."""

    __slots__ = ("remaining", "on_done")

    def __init__(self, size: int, on_done: Optional[Callable[[], None]]):
        self.remaining = size
        self.on_done = on_done

    def settle(self) -> None:
        self.remaining -= 1
        if self.remaining == 0 and self.on_done is not None:
            try:
                self.on_done()
            except Exception:
                log.exception("completion callback failed")


@dataclass(slots=True)
class _Item:
    record: WriteRecord
    batch: _Batch
    attempt: int = 0


@dataclass
class WriteSink:
    writer: RecordWriter
    cfg: SinkConfig
    on_outcome: Optional[Callable[[WriteOutcome], None]] = None
    stats: SinkStats = field(default_factory=SinkStats)

    def __post_init__(self) -> None:
        self._queue: asyncio.Queue[_Item] = asyncio.Queue(maxsize=self.cfg.queue_size)
        self._workers: List[asyncio.Task] = []
        self._retry_tasks: Set[asyncio.Task] = set()
        self._headroom = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._in_flight = 0
        self._closing = False

    @property
    def free_slots(self) -> int:
        return self._queue.maxsize - self._queue.qsize()

    @property
    def in_flight(self) -> int:
        """Records accepted but not yet written or dropped."""
        return self._in_flight

    async def start(self) -> None:
        if self._workers:
            return
        for idx in range(self.cfg.workers):
            self._workers.append(asyncio.create_task(self._worker_loop(idx), name=f"sink-worker-{idx}"))
        log.info(
            "write sink started with %d workers, queue size %d, max attempts %d",
            self.cfg.workers,
            self.cfg.queue_size,
            self.cfg.max_attempts,
        )

    def submit(self, records: Sequence[WriteRecord], on_done: Optional[Callable[[], None]] = None) -> bool:
        """Queue all ``records`` or none of them.

        Returns False when the queue lacks room for the whole batch.
        ``on_done`` runs once every record has been written or dropped.
        """
        if self._closing:
            raise SinkClosedError("write sink is closed")
        records = list(records)
        if len(records) > self._queue.maxsize:
            raise ValueError(f"batch of {len(records)} records exceeds queue capacity {self._queue.maxsize}")
        if self.free_slots < len(records):
            self._headroom.clear()
            self.stats.rejected += 1
            return False
        if not records:
            if on_done is not None:
                on_done()
            return True
        batch = _Batch(len(records), on_done)
        for record in records:
            self._queue.put_nowait(_Item(record=record, batch=batch))
        self._in_flight += len(records)
        self._idle.clear()
        self.stats.accepted += len(records)
        QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def wait_for_headroom(self, needed: int = 1) -> None:
        while self.free_slots < needed:
            if self._closing:
                raise SinkClosedError("write sink is closed")
            self._headroom.clear()
            await self._headroom.wait()

    async def drain(self) -> None:
        await self._idle.wait()

    async def close(self, grace_s: Optional[float] = None) -> None:
        """Stop accepting records, finish in-flight writes, then stop workers.

        Whatever is still pending after ``grace_s`` seconds is abandoned
        without running its completion callback.
        """
        grace = self.cfg.shutdown_grace_s if grace_s is None else grace_s
        self._closing = True
        self._headroom.set()
        try:
            await asyncio.wait_for(self.drain(), timeout=grace)
        except asyncio.TimeoutError:
            log.warning("write sink grace period of %.1fs expired with %d records pending", grace, self._in_flight)
        for task in [*self._workers, *self._retry_tasks]:
            task.cancel()
        await asyncio.gather(*self._workers, *self._retry_tasks, return_exceptions=True)
        self._workers.clear()
        self._retry_tasks.clear()
        if self._in_flight:
            RECORDS_DROPPED.labels("shutdown").inc(self._in_flight)
            self.stats.dropped_shutdown += self._in_flight
            log.error("dropped %d unwritten records at shutdown", self._in_flight)
            self._in_flight = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        QUEUE_DEPTH.set(0)
        self._idle.set()
        log.info(
            "write sink closed: written=%d retried=%d dropped fatal=%d exhausted=%d shutdown=%d",
            self.stats.written,
            self.stats.retried,
            self.stats.dropped_fatal,
            self.stats.dropped_exhausted,
            self.stats.dropped_shutdown,
        )

    async def _worker_loop(self, idx: int) -> None:
        while True:
            item = await self._queue.get()
            self._headroom.set()
            QUEUE_DEPTH.set(self._queue.qsize())
            try:
                outcome = await self._attempt(item)
                self._settle(item, outcome)
            except Exception:
                log.exception("sink worker %d failed handling record %s", idx, item.record.measurement)
            finally:
                self._queue.task_done()

    async def _attempt(self, item: _Item) -> WriteOutcome:
        item.attempt += 1
        start = time.perf_counter()
        try:
            await asyncio.wait_for(self.writer.write(item.record), timeout=self.cfg.attempt_timeout_s)
        except asyncio.TimeoutError as exc:
            result, error = WriteResult.RETRYABLE, exc
        except RetryableWriteError as exc:
            result, error = WriteResult.RETRYABLE, exc
        except FatalWriteError as exc:
            result, error = WriteResult.FATAL, exc
        except Exception as exc:
            log.exception("unclassified error writing %s; treating as fatal", item.record.measurement)
            result, error = WriteResult.FATAL, exc
        else:
            result, error = WriteResult.SUCCESS, None
        WRITE_LATENCY.observe((time.perf_counter() - start) * 1000)
        outcome = WriteOutcome(record=item.record, attempt=item.attempt, result=result, error=error)
        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception:
                log.exception("outcome observer failed for %s attempt %d", item.record.measurement, item.attempt)
        return outcome

    def _settle(self, item: _Item, outcome: WriteOutcome) -> None:
        record = item.record
        if outcome.result is WriteResult.SUCCESS:
            RECORDS_WRITTEN.labels(record.measurement).inc()
            self.stats.written += 1
            self._finish(item)
        elif outcome.result is WriteResult.FATAL:
            RECORDS_DROPPED.labels("fatal").inc()
            self.stats.dropped_fatal += 1
            log.error("dropping record %s after fatal error: %s", record.to_line(), outcome.error)
            self._finish(item)
        elif item.attempt >= self.cfg.max_attempts:
            RECORDS_DROPPED.labels("exhausted").inc()
            self.stats.dropped_exhausted += 1
            log.error(
                "dropping record %s after %d attempts: %s",
                record.to_line(),
                item.attempt,
                _reason(outcome.error),
            )
            self._finish(item)
        else:
            delay = self._backoff(item.attempt)
            WRITE_RETRIES.inc()
            self.stats.retried += 1
            log.warning(
                "write of %s failed (attempt %d/%d): %s; retrying in %.2fs",
                record.measurement,
                item.attempt,
                self.cfg.max_attempts,
                _reason(outcome.error),
                delay,
            )
            task = asyncio.create_task(self._requeue_later(item, delay))
            self._retry_tasks.add(task)
            task.add_done_callback(self._retry_tasks.discard)

    def _backoff(self, attempt: int) -> float:
        delay = min(self.cfg.backoff_base_s * (2 ** (attempt - 1)), self.cfg.backoff_max_s)
        if self.cfg.backoff_jitter:
            delay += random.uniform(0, delay * self.cfg.backoff_jitter)
        return delay

    async def _requeue_later(self, item: _Item, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.put(item)
        QUEUE_DEPTH.set(self._queue.qsize())

    def _finish(self, item: _Item) -> None:
        self._in_flight -= 1
        item.batch.settle()
        if self._in_flight == 0:
            self._idle.set()


def _reason(exc: Optional[BaseException]) -> str:
    if exc is None:
        return "unknown"
    return str(exc) or type(exc).__name__
