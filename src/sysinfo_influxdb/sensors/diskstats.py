"""Block device I/O counters from /proc/diskstats.

Each line is::

    major minor name  rd_ios rd_merges rd_sectors rd_ticks
                      wr_ios wr_merges wr_sectors wr_ticks
                      in_flight io_ticks time_in_queue [discard/flush fields...]

Newer kernels append discard and flush counters; only the first eleven
counters after the device name are reported.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

import numpy as np

from ..errors import SamplerError
from ..table import MeasurementTable

# major + minor + name + 11 counters
_MIN_FIELDS = 14
_NAME_INDEX = 2


class DiskstatsReader:
    """Read cumulative I/O counters for every device in /proc/diskstats."""

    COLUMNS: ClassVar[list[str]] = [
        "device",
        "read_ios",
        "read_merges",
        "read_sectors",
        "read_ticks",
        "write_ios",
        "write_merges",
        "write_sectors",
        "write_ticks",
        "in_flight",
        "io_ticks",
        "time_in_queue",
    ]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._diskstats_path = Path(proc_root) / "diskstats"

    def read(self) -> MeasurementTable:
        n_counters = len(self.COLUMNS) - 1
        rows = []

        for line in self._diskstats_path.read_text().splitlines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) < _MIN_FIELDS:
                raise SamplerError(f"Short /proc/diskstats line: {line!r}")

            start = _NAME_INDEX + 1
            counters = []
            for field in parts[start : start + n_counters]:
                try:
                    counters.append(np.int64(int(field)))
                except ValueError:
                    counters.append(np.int64(0))
            rows.append((parts[_NAME_INDEX], *counters))

        return MeasurementTable(self._name, self.COLUMNS, rows)
