"""Lap orchestration: concurrent sampling, normalization and emission.

A lap launches every sampler on its own daemon thread, waits for all of
them (bounded by the sampler timeout), and routes counter families through
the rate normalizer as soon as each sampler finishes.  The lap is complete
only when every sampler succeeded and no counter table is still waiting
for its baseline.

A sampler still stuck in an earlier lap is not started again; it counts
as failed until its thread returns.

One-shot mode re-runs laps immediately until one is complete, so a single
invocation still reports rates.  Daemon mode emits whatever each lap
produced and sleeps until the next tick.
"""

from __future__ import annotations

import logging
import queue
import signal
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TextIO

from .display import show
from .errors import IncompleteLapError, SinkError
from .normalizer import RateNormalizer
from .schema import BoundSampler, build_samplers

if TYPE_CHECKING:
    from .config import CollectorConfig
    from .sink import InfluxSink
    from .table import MeasurementTable

log = logging.getLogger(__name__)


@dataclass
class LapResult:
    """Outcome of one lap."""

    tables: list[MeasurementTable] = field(default_factory=list)
    # Table names whose sampler raised or timed out
    failed: list[str] = field(default_factory=list)
    # Table names that only established a baseline this lap
    incomplete: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.incomplete


class _SampleTask:
    """One sampler read on a daemon thread.

    The lap that started the task either collects its outcome or abandons
    it at the timeout.  An abandoned task never touches the normalizer, so
    a late read cannot rewrite a snapshot after its lap counted it failed.
    """

    def __init__(
        self,
        sampler: BoundSampler,
        normalizer: RateNormalizer,
        done: queue.Queue[_SampleTask],
    ) -> None:
        self.sampler = sampler
        self._normalizer = normalizer
        self._done = done
        self._lock = threading.Lock()
        self._abandoned = False
        self._finished = False
        self.table: MeasurementTable | None = None
        self.error: BaseException | None = None
        self.thread = threading.Thread(
            target=self._run,
            name=f"sampler-{sampler.name}",
            daemon=True,
        )

    def _run(self) -> None:
        table: MeasurementTable | None = None
        error: BaseException | None = None
        try:
            table = self.sampler.reader.read()
        except Exception as e:
            error = e

        with self._lock:
            if self._abandoned:
                log.debug("%s: late read discarded", self.sampler.name)
                return
            if error is None and self.sampler.family.is_counter:
                try:
                    # None means the normalizer has no rate yet
                    table = self._normalizer.normalize(table)
                except Exception as e:
                    error = e
            self.table = table
            self.error = error
            self._finished = True
        self._done.put(self)

    def settle(self) -> bool:
        """Return True if the task finished; otherwise abandon it."""
        with self._lock:
            if not self._finished:
                self._abandoned = True
            return self._finished


class Collector:
    """Runs laps over a fixed set of samplers sharing one normalizer."""

    def __init__(
        self,
        config: CollectorConfig,
        samplers: list[BoundSampler] | None = None,
        normalizer: RateNormalizer | None = None,
        sink: InfluxSink | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self._config = config
        self._samplers = samplers if samplers is not None else build_samplers(config)
        self._normalizer = normalizer or RateNormalizer(config.consistency_factor)
        self._sink = sink
        self._stream = stream
        self._stop_event = threading.Event()
        self._fqdn: str | None = None
        # Tasks of earlier laps whose thread may still be running
        self._inflight: dict[str, _SampleTask] = {}

    def stop(self) -> None:
        """Ask a running daemon loop to exit after the current lap."""
        self._stop_event.set()

    def run_lap(self) -> LapResult:
        """Sample every family concurrently and collect the results."""
        result = LapResult()
        if not self._samplers:
            return result

        done: queue.Queue[_SampleTask] = queue.Queue()
        tasks: dict[str, _SampleTask] = {}
        for sampler in self._samplers:
            previous = self._inflight.get(sampler.name)
            if previous is not None and previous.thread.is_alive():
                # Still stuck in an earlier lap: do not stack another thread
                continue
            task = _SampleTask(sampler, self._normalizer, done)
            tasks[sampler.name] = task
            self._inflight[sampler.name] = task
            task.thread.start()

        deadline = time.monotonic() + self._config.sampler_timeout
        for _ in range(len(tasks)):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                done.get(timeout=remaining)
            except queue.Empty:
                break

        for sampler in self._samplers:
            task = tasks.get(sampler.name)
            if task is None:
                log.warning("%s: previous read still running", sampler.name)
                result.failed.append(sampler.name)
                continue

            if not task.settle():
                log.warning(
                    "%s: sampler timed out after %ss",
                    sampler.name,
                    self._config.sampler_timeout,
                )
                result.failed.append(sampler.name)
                continue

            if task.error is not None:
                log.warning("%s: sampling failed: %s", sampler.name, task.error)
                result.failed.append(sampler.name)
                continue

            table = task.table
            if table is None:
                result.incomplete.append(sampler.name)
            else:
                result.tables.append(table)

        log.debug(
            "Lap done: %d table(s), failed=%s, incomplete=%s",
            len(result.tables),
            result.failed,
            result.incomplete,
        )
        return result

    def collect_once(self) -> LapResult:
        """Run laps back to back until one is complete.

        Raises:
            IncompleteLapError: If ``max_laps`` laps all came back incomplete.
        """
        result = LapResult()
        for lap in range(1, self._config.max_laps + 1):
            result = self.run_lap()
            if result.complete:
                return result
            log.debug("Lap %d incomplete, retrying", lap)
        raise IncompleteLapError(
            self._config.max_laps, result.failed + result.incomplete
        )

    def _host_fqdn(self) -> str:
        if self._fqdn is None:
            self._fqdn = socket.getfqdn()
        return self._fqdn

    def emit(self, tables: list[MeasurementTable]) -> None:
        """Send a batch to the display and the sink.

        Sink errors are logged; they never stop the caller.
        """
        if self._config.fqdn:
            fqdn = self._host_fqdn()
            tables = [t.with_column("fqdn", fqdn) for t in tables]

        show(tables, self._config.display, self._stream)

        if self._sink is not None:
            try:
                self._sink.write(tables)
            except SinkError as e:
                log.warning("%s", e)

    def run_once(self) -> LapResult:
        """One-shot mode: emit the first complete lap."""
        result = self.collect_once()
        self.emit(result.tables)
        return result

    def run_daemon(self, max_cycles: int | None = None) -> int:
        """Daemon mode: one lap per interval until stopped.

        Returns:
            The number of laps run.
        """
        interval = self._config.interval
        start_mono = time.monotonic()
        next_tick = time.monotonic()
        laps = 0

        while not self._stop_event.is_set():
            if max_cycles is not None and laps >= max_cycles:
                break
            if self._config.duration > 0:
                if time.monotonic() - start_mono >= self._config.duration:
                    log.info("Duration limit reached (%ss)", self._config.duration)
                    break

            result = self.run_lap()
            laps += 1
            if result.tables:
                self.emit(result.tables)

            # Sleep until next tick (compensate for lap time)
            next_tick += interval
            sleep_time = next_tick - time.monotonic()
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                # Behind schedule: skip ahead to avoid drift
                missed = int(-sleep_time / interval)
                if missed > 0:
                    log.warning("Missed %d tick(s), resynchronizing", missed)
                next_tick = time.monotonic()

        return laps


def run_collector(
    config: CollectorConfig,
    sink: InfluxSink | None = None,
    stream: TextIO | None = None,
) -> None:
    """Run the collector in the mode ``config`` asks for."""
    collector = Collector(config, sink=sink, stream=stream)
    log.info(
        "Collecting %s every %ss (consistency factor %.3g)",
        ",".join(f.value for f in config.families),
        config.interval,
        config.consistency_factor,
    )

    if not config.daemon:
        collector.run_once()
        return

    def _signal_handler(signum: int, frame: object) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        log.info("Received signal %d, stopping", signum)
        collector.stop()

    previous = {
        signum: signal.signal(signum, _signal_handler)
        for signum in (signal.SIGTERM, signal.SIGINT)
    }

    start_mono = time.monotonic()
    try:
        laps = collector.run_daemon()
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    log.info("Done. %d lap(s) in %.1fs", laps, time.monotonic() - start_mono)
