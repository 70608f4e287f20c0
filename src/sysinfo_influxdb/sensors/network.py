"""Network interface counters from /proc/net/dev.

The file starts with two header lines, followed by one line per interface::

    Inter-|   Receive                            ...|  Transmit
     face |bytes    packets errs drop fifo frame ...|bytes    packets ...
        lo: 1234 12 0 0 0 0 0 0 1234 12 0 0 0 0 0 0
      eth0: ...
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

import numpy as np

from ..errors import SamplerError
from ..table import MeasurementTable

_HEADER_LINES = 2


class NetworkReader:
    """Read cumulative receive/transmit counters for every interface.

    Counters that fail to parse are reported as 0.
    """

    COLUMNS: ClassVar[list[str]] = [
        "iface",
        "recv_bytes",
        "recv_packets",
        "recv_errs",
        "recv_drop",
        "recv_fifo",
        "recv_frame",
        "recv_compressed",
        "recv_multicast",
        "trans_bytes",
        "trans_packets",
        "trans_errs",
        "trans_drop",
        "trans_fifo",
        "trans_colls",
        "trans_carrier",
        "trans_compressed",
    ]

    def __init__(self, name: str, proc_root: str = "/proc") -> None:
        self._name = name
        self._dev_path = Path(proc_root) / "net" / "dev"

    @staticmethod
    def _parse_counter(field: str) -> np.int64:
        try:
            return np.int64(int(field))
        except ValueError:
            return np.int64(0)

    def read(self) -> MeasurementTable:
        n_counters = len(self.COLUMNS) - 1
        rows = []

        lines = self._dev_path.read_text().splitlines()
        for line in lines[_HEADER_LINES:]:
            if not line.strip():
                continue
            iface, sep, rest = line.partition(":")
            if not sep:
                raise SamplerError(f"Malformed /proc/net/dev line: {line!r}")

            fields = rest.split()
            # Pad short lines so the column layout stays fixed
            fields += ["0"] * (n_counters - len(fields))
            counters = [self._parse_counter(f) for f in fields[:n_counters]]
            rows.append((iface.strip(), *counters))

        return MeasurementTable(self._name, self.COLUMNS, rows)
