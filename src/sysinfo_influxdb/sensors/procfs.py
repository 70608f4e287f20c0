"""CPU, memory, swap, uptime and load samplers backed by procfs.

CPU tick counters are reported raw (``numpy.uint64``) and are turned into
rates by the normalizer.  Memory and swap are reported in bytes, uptime in
seconds, load averages as floats; none of those are diffed.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

import numpy as np

from ..errors import SamplerError
from ..table import MeasurementTable

_CPU_COLUMNS: list[str] = ["id", "user", "nice", "sys", "idle", "wait", "total"]


def _parse_cpu_line(line: str) -> tuple[str, tuple[np.uint64, ...]]:
    """Parse one ``cpu``/``cpuN`` line from /proc/stat.

    Fields (all in jiffies):
        user, nice, system, idle, iowait, irq, softirq, steal, ...

    Returns:
        The line's id and the (user, nice, sys, idle, wait, total) counters.
        ``total`` is the sum of the first eight fields; guest time is
        already accounted for in user/nice.
    """
    parts = line.split()
    try:
        values = [int(p) for p in parts[1:9]]
    except ValueError:
        raise SamplerError(f"Malformed /proc/stat line: {line!r}") from None
    if len(values) < 4:
        raise SamplerError(f"Short /proc/stat line: {line!r}")
    # Older kernels expose fewer fields
    while len(values) < 8:
        values.append(0)

    user, nice, system, idle, iowait = values[:5]
    counters = (user, nice, system, idle, iowait, sum(values))
    return parts[0], tuple(np.uint64(v) for v in counters)


def _read_meminfo(path: Path) -> dict[str, int]:
    """Parse /proc/meminfo into a ``{key: bytes}`` dict."""
    result: dict[str, int] = {}
    for line in path.read_text().splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        try:
            value = int(parts[1])
        except ValueError:
            continue
        if len(parts) > 2 and parts[2] == "kB":
            value *= 1024
        result[parts[0].rstrip(":")] = value
    return result


def _require(info: dict[str, int], *keys: str) -> list[int]:
    missing = [k for k in keys if k not in info]
    if missing:
        raise SamplerError(f"/proc/meminfo lacks {', '.join(missing)}")
    return [info[k] for k in keys]


class CpuReader:
    """Aggregate CPU ticks from the ``cpu`` line of /proc/stat."""

    COLUMNS: ClassVar[list[str]] = _CPU_COLUMNS

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._stat_path = Path(proc_root) / "stat"

    def read(self) -> MeasurementTable:
        for line in self._stat_path.read_text().splitlines():
            if line.startswith("cpu "):
                cpu_id, counters = _parse_cpu_line(line)
                row = (cpu_id, *counters)
                return MeasurementTable(self._name, self.COLUMNS, [row])
        raise SamplerError("/proc/stat has no aggregate cpu line")


class CpusReader:
    """Per-core CPU ticks, one row per ``cpuN`` line of /proc/stat."""

    COLUMNS: ClassVar[list[str]] = _CPU_COLUMNS

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._stat_path = Path(proc_root) / "stat"

    def read(self) -> MeasurementTable:
        rows = []
        for line in self._stat_path.read_text().splitlines():
            if line.startswith("cpu") and line[3:4].isdigit():
                cpu_id, counters = _parse_cpu_line(line)
                rows.append((cpu_id, *counters))
        return MeasurementTable(self._name, self.COLUMNS, rows)


class MemReader:
    """Physical memory usage in bytes.

    ``actualfree``/``actualused`` count buffers and page cache as free,
    which is what most operators mean by "available".
    """

    COLUMNS: ClassVar[list[str]] = ["free", "used", "actualfree", "actualused", "total"]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._meminfo_path = Path(proc_root) / "meminfo"

    def read(self) -> MeasurementTable:
        info = _read_meminfo(self._meminfo_path)
        total, free = _require(info, "MemTotal", "MemFree")
        kernel = info.get("Buffers", 0) + info.get("Cached", 0)
        used = total - free
        row = (free, used, free + kernel, used - kernel, total)
        return MeasurementTable(self._name, self.COLUMNS, [row])


class SwapReader:
    """Swap usage in bytes; no rows when the host has no swap configured."""

    COLUMNS: ClassVar[list[str]] = ["free", "used", "total"]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._meminfo_path = Path(proc_root) / "meminfo"

    def read(self) -> MeasurementTable:
        info = _read_meminfo(self._meminfo_path)
        total, free = _require(info, "SwapTotal", "SwapFree")
        if total == 0:
            return MeasurementTable(self._name, self.COLUMNS, [])
        row = (free, total - free, total)
        return MeasurementTable(self._name, self.COLUMNS, [row])


class UptimeReader:
    """Seconds since boot from /proc/uptime."""

    COLUMNS: ClassVar[list[str]] = ["length"]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._uptime_path = Path(proc_root) / "uptime"

    def read(self) -> MeasurementTable:
        text = self._uptime_path.read_text()
        try:
            length = float(text.split()[0])
        except (IndexError, ValueError):
            raise SamplerError(f"Malformed /proc/uptime: {text!r}") from None
        return MeasurementTable(self._name, self.COLUMNS, [(length,)])


class LoadReader:
    """1, 5 and 15 minute load averages from /proc/loadavg."""

    COLUMNS: ClassVar[list[str]] = ["one", "five", "fifteen"]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._loadavg_path = Path(proc_root) / "loadavg"

    def read(self) -> MeasurementTable:
        # Format: "0.08 0.03 0.01 1/234 5678"
        text = self._loadavg_path.read_text()
        try:
            one, five, fifteen = (float(p) for p in text.split()[:3])
        except ValueError:
            raise SamplerError(f"Malformed /proc/loadavg: {text!r}") from None
        return MeasurementTable(self._name, self.COLUMNS, [(one, five, fifteen)])
