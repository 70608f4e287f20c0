"""Turn cumulative counter tables into per-interval deltas.

The normalizer keeps the last raw rows seen for every table name.  Each
call diffs the new raw rows against that snapshot cell by cell, scales the
delta by the consistency factor and stores the new raw rows for next time.

Rows are matched by position: row ``i`` of this lap is diffed against row
``i`` of the previous lap.  A cell with no previous value (first lap, a new
interface, a new column) becomes the baseline and makes the whole result
incomplete, because a single sample is not enough to compute a rate.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from .table import MeasurementTable, Value

log = logging.getLogger(__name__)


def _is_integral(value: Value) -> bool:
    """True for builtin ints and numpy fixed-width integers, never for bools."""
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _wrap(value: int, info: np.iinfo) -> int:
    """Wrap ``value`` into the range of the integer type described by ``info``."""
    span = int(info.max) - int(info.min) + 1
    return (value - int(info.min)) % span + int(info.min)


def scaled_delta(new: Value, old: Value, factor: float) -> Value:
    """Return ``(new - old) * factor`` in the integer type of ``new``.

    Fixed-width numpy integers subtract with wraparound, so a 32-bit counter
    that rolled over still yields the right delta.  The product is computed
    in floating point and truncated toward zero, which loses precision for
    deltas beyond 2**53.  Values that are not integers are returned as-is.
    """
    if not (_is_integral(new) and _is_integral(old)):
        return new

    if isinstance(new, np.integer):
        int_type = type(new)
        info = np.iinfo(int_type)
        diff = _wrap(int(new) - int(old), info)
        return int_type(_wrap(int(float(diff) * factor), info))

    return int(float(int(new) - int(old)) * factor)


class RateNormalizer:
    """Per-table raw snapshot cache and delta engine.

    All calls to :meth:`normalize` are serialized by a single lock, so one
    instance can be shared by every sampler thread of a lap.
    """

    def __init__(self, factor: float = 1.0) -> None:
        self._factor = factor
        self._lock = threading.Lock()
        self._snapshots: dict[str, list[list[Value]]] = {}

    def normalize(self, table: MeasurementTable) -> MeasurementTable | None:
        """Diff ``table`` against the previous raw snapshot of the same name.

        Returns:
            The table of scaled deltas, or ``None`` when at least one cell
            had no previous value.  The snapshot is updated either way.
        """
        with self._lock:
            previous = self._snapshots.setdefault(table.name, [])
            complete = True
            rows: list[tuple[Value, ...]] = []

            for i, row in enumerate(table.rows):
                if len(previous) <= i:
                    previous.append([])
                last = previous[i]

                out: list[Value] = []
                for j, value in enumerate(row):
                    if len(last) <= j:
                        # New baseline: keep the raw value, no delta yet
                        last.append(value)
                        complete = False
                        out.append(value)
                        continue

                    out.append(scaled_delta(value, last[j], self._factor))
                    last[j] = value

                rows.append(tuple(out))

        if not complete:
            log.debug("%s: new baseline, result incomplete", table.name)
            return None

        return MeasurementTable(name=table.name, columns=table.columns, rows=rows)

    def snapshot(self, name: str) -> list[list[Value]] | None:
        """Return a copy of the raw rows cached for ``name``, if any."""
        with self._lock:
            rows = self._snapshots.get(name)
            return None if rows is None else [list(r) for r in rows]

    def reset(self) -> None:
        """Forget every cached snapshot."""
        with self._lock:
            self._snapshots.clear()
