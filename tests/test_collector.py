"""Tests for lap orchestration."""

from __future__ import annotations

import io
import json
import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from unittest import mock

import numpy as np
import pytest

from sysinfo_influxdb import collector as collector_mod
from sysinfo_influxdb.collector import Collector, run_collector
from sysinfo_influxdb.config import DISPLAY_JSON, DISPLAY_OFF, CollectorConfig
from sysinfo_influxdb.errors import IncompleteLapError, SinkError
from sysinfo_influxdb.families import Family
from sysinfo_influxdb.normalizer import RateNormalizer
from sysinfo_influxdb.schema import BoundSampler
from sysinfo_influxdb.table import MeasurementTable


class FakeReader:
    """Reader returning a scripted table per call; the last one repeats."""

    def __init__(self, *results: MeasurementTable | Exception) -> None:
        self._results = list(results)
        self.calls = 0

    def read(self) -> MeasurementTable:
        result = self._results[min(self.calls, len(self._results) - 1)]
        self.calls += 1
        if isinstance(result, Exception):
            raise result
        return result


class CallbackReader:
    def __init__(self, fn: Callable[[], MeasurementTable]) -> None:
        self._fn = fn

    def read(self) -> MeasurementTable:
        return self._fn()


def _cpu(total: int) -> MeasurementTable:
    row = ("cpu", np.uint64(1), np.uint64(0), np.uint64(1), np.uint64(1),
           np.uint64(0), np.uint64(total))
    return MeasurementTable(
        "h.cpu", ["id", "user", "nice", "sys", "idle", "wait", "total"], [row]
    )


def _net(*ifaces: tuple[str, int]) -> MeasurementTable:
    rows = [(name, np.int64(value)) for name, value in ifaces]
    return MeasurementTable("h.network", ["iface", "recv_bytes"], rows)


MEM = MeasurementTable(
    "h.mem", ["free", "used", "actualfree", "actualused", "total"], [(1, 2, 3, 4, 5)]
)
SWAP = MeasurementTable("h.swap", ["free", "used", "total"], [(1, 1, 2)])


def _bound(family: Family, reader: object) -> BoundSampler:
    return BoundSampler(family=family, name=f"h.{family.value}", reader=reader)  # type: ignore[arg-type]


def _named(family: Family, name: str, reader: object) -> BoundSampler:
    return BoundSampler(family=family, name=name, reader=reader)  # type: ignore[arg-type]


def _sampler_threads(name: str) -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name == f"sampler-{name}"]


def _join(threads: list[threading.Thread]) -> None:
    for t in threads:
        t.join(5)


def _config(**kwargs: object) -> CollectorConfig:
    kwargs.setdefault("prefix", "h")
    kwargs.setdefault("display", DISPLAY_OFF)
    return CollectorConfig(**kwargs)  # type: ignore[arg-type]


class TestRunLap:
    """Tests for Collector.run_lap()."""

    def test_first_lap_counter_incomplete(self) -> None:
        samplers = [_bound(Family.CPU, FakeReader(_cpu(100))), _bound(Family.MEM, FakeReader(MEM))]
        result = Collector(_config(), samplers=samplers).run_lap()
        assert not result.complete
        assert result.incomplete == ["h.cpu"]
        assert result.tables == [MEM]

    def test_second_lap_complete(self) -> None:
        samplers = [_bound(Family.CPU, FakeReader(_cpu(100), _cpu(150)))]
        collector = Collector(_config(), samplers=samplers)
        collector.run_lap()
        result = collector.run_lap()
        assert result.complete
        assert result.tables[0].rows[0][-1] == 50

    def test_consistency_factor_applied(self) -> None:
        samplers = [_bound(Family.CPU, FakeReader(_cpu(100), _cpu(150)))]
        collector = Collector(_config(consistency=60.0), samplers=samplers)
        collector.run_lap()
        assert collector.run_lap().tables[0].rows[0][-1] == 3000

    def test_non_counter_families_not_diffed(self) -> None:
        samplers = [_bound(Family.MEM, FakeReader(MEM)), _bound(Family.SWAP, FakeReader(SWAP))]
        collector = Collector(_config(), samplers=samplers)
        collector.run_lap()
        result = collector.run_lap()
        assert result.complete
        assert result.tables == [MEM, SWAP]

    def test_sampler_failure_is_local(self, caplog: pytest.LogCaptureFixture) -> None:
        samplers = [
            _bound(Family.MEM, FakeReader(MEM)),
            _bound(Family.SWAP, FakeReader(FileNotFoundError("/proc/meminfo"))),
        ]
        with caplog.at_level(logging.WARNING):
            result = Collector(_config(), samplers=samplers).run_lap()
        assert result.failed == ["h.swap"]
        assert result.tables == [MEM]
        assert not result.complete
        assert "h.swap" in caplog.text

    def test_tables_follow_configured_order(self) -> None:
        release = threading.Event()

        def _slow_mem() -> MeasurementTable:
            release.wait(5)
            return MEM

        def _fast_swap() -> MeasurementTable:
            release.set()
            return SWAP

        samplers = [
            _bound(Family.MEM, CallbackReader(_slow_mem)),
            _bound(Family.SWAP, CallbackReader(_fast_swap)),
        ]
        result = Collector(_config(), samplers=samplers).run_lap()
        assert result.tables == [MEM, SWAP]

    def test_samplers_run_concurrently(self) -> None:
        barrier = threading.Barrier(2, timeout=5)

        def _meet(table: MeasurementTable) -> Callable[[], MeasurementTable]:
            def _read() -> MeasurementTable:
                barrier.wait()
                return table

            return _read

        samplers = [
            _bound(Family.MEM, CallbackReader(_meet(MEM))),
            _bound(Family.SWAP, CallbackReader(_meet(SWAP))),
        ]
        result = Collector(_config(), samplers=samplers).run_lap()
        assert result.complete

    def test_hung_sampler_times_out(self) -> None:
        release = threading.Event()

        def _hang() -> MeasurementTable:
            release.wait(5)
            return SWAP

        samplers = [
            _bound(Family.MEM, FakeReader(MEM)),
            _bound(Family.SWAP, CallbackReader(_hang)),
        ]
        try:
            result = Collector(_config(sampler_timeout=0.1), samplers=samplers).run_lap()
        finally:
            release.set()
            _join(_sampler_threads("h.swap"))
        assert result.failed == ["h.swap"]
        assert result.tables == [MEM]

    def test_stuck_sampler_not_restarted(self) -> None:
        release = threading.Event()
        calls: list[int] = []

        def _hang() -> MeasurementTable:
            calls.append(1)
            release.wait(5)
            return SWAP

        samplers = [
            _bound(Family.MEM, FakeReader(MEM)),
            _named(Family.SWAP, "stuck.swap", CallbackReader(_hang)),
        ]
        collector = Collector(_config(sampler_timeout=0.05), samplers=samplers)
        try:
            for _ in range(5):
                result = collector.run_lap()
                assert result.failed == ["stuck.swap"]
                assert result.tables == [MEM]
            assert len(calls) == 1
            assert len(_sampler_threads("stuck.swap")) == 1
        finally:
            release.set()
            _join(_sampler_threads("stuck.swap"))

    def test_stuck_sampler_thread_is_daemon(self) -> None:
        release = threading.Event()

        def _hang() -> MeasurementTable:
            release.wait(5)
            return SWAP

        samplers = [_named(Family.SWAP, "daemon.swap", CallbackReader(_hang))]
        try:
            Collector(_config(sampler_timeout=0.05), samplers=samplers).run_lap()
            (stuck,) = _sampler_threads("daemon.swap")
            assert stuck.daemon
        finally:
            release.set()
            _join(_sampler_threads("daemon.swap"))

    def test_sampler_resumes_after_stuck_read_returns(self) -> None:
        release = threading.Event()

        def _hang() -> MeasurementTable:
            release.wait(5)
            return SWAP

        collector = Collector(
            _config(sampler_timeout=0.05),
            samplers=[_named(Family.SWAP, "resume.swap", CallbackReader(_hang))],
        )
        try:
            assert collector.run_lap().failed == ["resume.swap"]
        finally:
            release.set()
            _join(_sampler_threads("resume.swap"))

        result = collector.run_lap()
        assert result.complete
        assert result.tables == [SWAP]

    def test_late_counter_read_leaves_normalizer_alone(self) -> None:
        release = threading.Event()

        def _slow_cpu() -> MeasurementTable:
            release.wait(5)
            return _cpu(100)

        normalizer = RateNormalizer()
        collector = Collector(
            _config(sampler_timeout=0.05),
            samplers=[_named(Family.CPU, "late.cpu", CallbackReader(_slow_cpu))],
            normalizer=normalizer,
        )
        try:
            result = collector.run_lap()
            stuck = _sampler_threads("late.cpu")
            assert len(stuck) == 1
        finally:
            release.set()
            _join(_sampler_threads("late.cpu"))

        assert result.failed == ["late.cpu"]
        assert not stuck[0].is_alive()
        assert normalizer.snapshot("h.cpu") is None

    def test_new_interface_incomplete(self) -> None:
        reader = FakeReader(_net(("eth0", 100)), _net(("eth0", 200), ("eth1", 5)))
        collector = Collector(_config(), samplers=[_bound(Family.NETWORK, reader)])
        collector.run_lap()
        result = collector.run_lap()
        assert result.incomplete == ["h.network"]
        assert result.tables == []

    def test_no_samplers(self) -> None:
        result = Collector(_config(), samplers=[]).run_lap()
        assert result.complete
        assert result.tables == []


class TestCollectOnce:
    """Tests for one-shot retry behaviour."""

    def test_retries_until_complete(self) -> None:
        reader = FakeReader(_cpu(100), _cpu(150))
        collector = Collector(_config(), samplers=[_bound(Family.CPU, reader)])
        result = collector.collect_once()
        assert result.complete
        assert reader.calls == 2
        assert result.tables[0].rows[0][-1] == 50

    def test_new_interface_triggers_retry(self) -> None:
        reader = FakeReader(
            _net(("eth0", 100)),
            _net(("eth0", 200), ("eth1", 5)),
            _net(("eth0", 250), ("eth1", 9)),
        )
        collector = Collector(_config(), samplers=[_bound(Family.NETWORK, reader)])
        collector.run_lap()
        result = collector.collect_once()
        assert reader.calls == 3
        assert result.tables[0].rows == (("eth0", 50), ("eth1", 4))

    def test_failure_triggers_retry(self) -> None:
        reader = FakeReader(OSError("busy"), SWAP)
        collector = Collector(_config(), samplers=[_bound(Family.SWAP, reader)])
        result = collector.collect_once()
        assert result.tables == [SWAP]
        assert reader.calls == 2

    def test_gives_up_after_max_laps(self) -> None:
        reader = FakeReader(OSError("gone"))
        samplers = [_bound(Family.SWAP, reader), _bound(Family.MEM, FakeReader(MEM))]
        collector = Collector(_config(max_laps=3), samplers=samplers)
        with pytest.raises(IncompleteLapError) as excinfo:
            collector.collect_once()
        assert excinfo.value.laps == 3
        assert excinfo.value.missing == ["h.swap"]
        assert reader.calls == 3


class TestEmit:
    """Tests for Collector.emit()."""

    def test_json_display(self) -> None:
        stream = io.StringIO()
        collector = Collector(_config(display=DISPLAY_JSON), samplers=[], stream=stream)
        collector.emit([MEM])
        assert json.loads(stream.getvalue()) == [MEM.to_dict()]

    def test_fqdn_column(self) -> None:
        stream = io.StringIO()
        collector = Collector(
            _config(display=DISPLAY_JSON, fqdn=True), samplers=[], stream=stream
        )
        with mock.patch.object(collector_mod.socket, "getfqdn", return_value="h.example.com"):
            collector.emit([MEM, SWAP])
        data = json.loads(stream.getvalue())
        assert all(series["columns"][-1] == "fqdn" for series in data)
        assert data[0]["points"] == [[1, 2, 3, 4, 5, "h.example.com"]]

    def test_sink_receives_batch(self) -> None:
        sink = mock.Mock()
        Collector(_config(), samplers=[], sink=sink).emit([MEM, SWAP])
        sink.write.assert_called_once_with([MEM, SWAP])

    def test_sink_error_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = mock.Mock()
        sink.write.side_effect = SinkError("InfluxDB write failed: refused")
        with caplog.at_level(logging.WARNING):
            Collector(_config(), samplers=[], sink=sink).emit([MEM])
        assert "refused" in caplog.text


class TestRunDaemon:
    """Tests for Collector.run_daemon()."""

    def test_emits_available_tables_each_lap(self) -> None:
        sink = mock.Mock()
        samplers = [
            _bound(Family.CPU, FakeReader(_cpu(100), _cpu(150), _cpu(160))),
            _bound(Family.MEM, FakeReader(MEM)),
        ]
        collector = Collector(_config(daemon=True, interval=0.01), samplers=samplers, sink=sink)
        assert collector.run_daemon(max_cycles=3) == 3

        batches = [c.args[0] for c in sink.write.call_args_list]
        # First lap: cpu only has a baseline
        assert [t.name for t in batches[0]] == ["h.mem"]
        assert [t.name for t in batches[1]] == ["h.cpu", "h.mem"]
        assert batches[2][0].rows[0][-1] == 10

    def test_nothing_emitted_for_empty_lap(self) -> None:
        sink = mock.Mock()
        samplers = [_bound(Family.CPU, FakeReader(_cpu(100)))]
        collector = Collector(_config(daemon=True, interval=0.01), samplers=samplers, sink=sink)
        collector.run_daemon(max_cycles=1)
        sink.write.assert_not_called()

    def test_stop(self) -> None:
        collector = Collector(_config(daemon=True, interval=0.01), samplers=[])
        collector.stop()
        assert collector.run_daemon() == 0

    def test_duration_limit(self) -> None:
        collector = Collector(
            _config(daemon=True, interval=0.01, duration=0.05), samplers=[]
        )
        assert collector.run_daemon() >= 1


SAMPLE_STAT = "cpu  10000 500 3000 80000 200 100 50 10 0 0\n"
SAMPLE_MEMINFO = "MemTotal: 1000 kB\nMemFree: 400 kB\nBuffers: 10 kB\nCached: 90 kB\n"


class TestRunCollector:
    """End-to-end runs against a fake /proc tree."""

    def test_one_shot_reports_rates(self, tmp_path: Path) -> None:
        (tmp_path / "stat").write_text(SAMPLE_STAT)
        (tmp_path / "meminfo").write_text(SAMPLE_MEMINFO)
        config = CollectorConfig(
            prefix="web1",
            families=[Family.CPU, Family.MEM],
            display=DISPLAY_JSON,
            proc_root=str(tmp_path),
        )
        stream = io.StringIO()
        run_collector(config, stream=stream)

        cpu, mem = json.loads(stream.getvalue())
        assert cpu["name"] == "web1.cpu"
        # Static counters between the two back-to-back laps
        assert cpu["points"] == [["cpu", 0, 0, 0, 0, 0, 0]]
        assert mem["points"] == [[409600, 614400, 512000, 512000, 1024000]]

    @pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
    def test_daemon_stops_on_signal(self, tmp_path: Path, signum: int) -> None:
        (tmp_path / "meminfo").write_text(SAMPLE_MEMINFO)
        config = CollectorConfig(
            prefix="web1",
            daemon=True,
            interval=0.01,
            families=[Family.MEM],
            display=DISPLAY_OFF,
            proc_root=str(tmp_path),
        )
        previous = signal.getsignal(signum)

        def _deliver(tables: list[MeasurementTable]) -> None:
            # Invoke whatever handler run_collector installed
            handler = signal.getsignal(signum)
            assert callable(handler)
            assert handler is not previous
            handler(signum, None)

        sink = mock.Mock()
        sink.write.side_effect = _deliver
        run_collector(config, sink=sink)

        # The lap in progress finishes, no further lap starts
        assert sink.write.call_count == 1
        assert sink.write.call_args.args[0][0].name == "web1.mem"
        assert signal.getsignal(signum) is previous

    def test_daemon_restores_handlers_on_error(self, tmp_path: Path) -> None:
        (tmp_path / "meminfo").write_text(SAMPLE_MEMINFO)
        config = CollectorConfig(
            daemon=True,
            interval=0.01,
            families=[Family.MEM],
            display=DISPLAY_OFF,
            proc_root=str(tmp_path),
        )
        previous = {s: signal.getsignal(s) for s in (signal.SIGTERM, signal.SIGINT)}
        sink = mock.Mock()
        sink.write.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            run_collector(config, sink=sink)
        assert {s: signal.getsignal(s) for s in previous} == previous
