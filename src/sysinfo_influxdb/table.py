"""The measurement table exchanged between samplers, normalizer and outputs.

A table mirrors an InfluxDB 0.8 series: a name, an ordered column list and
a list of points (rows).  The JSON form uses the same keys so that the
structured display output can be fed back to older tooling unchanged.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import numpy as np

Value = Any


def plain_value(value: Value) -> Value:
    """Convert numpy scalars to the equivalent builtin for serialization."""
    if isinstance(value, np.generic):
        return value.item()
    return value


@dataclass(frozen=True)
class MeasurementTable:
    """One metric family's values for a single lap.

    Every row must have exactly ``len(columns)`` values, in column order.
    """

    name: str
    columns: tuple[str, ...]
    rows: tuple[tuple[Value, ...], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so tables are immutable.
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))

        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"{self.name}: row {index} has {len(row)} values, "
                    f"expected {width}"
                )

    def with_column(self, column: str, value: Value) -> MeasurementTable:
        """Return a copy with ``column`` appended and ``value`` on every row."""
        return MeasurementTable(
            name=self.name,
            columns=(*self.columns, column),
            rows=tuple((*row, value) for row in self.rows),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready series representation."""
        return {
            "name": self.name,
            "columns": list(self.columns),
            "points": [[plain_value(v) for v in row] for row in self.rows],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MeasurementTable:
        """Build a table from the output of :meth:`to_dict`.

        Raises:
            ValueError: If a required key is missing or rows are misaligned.
        """
        try:
            return cls(
                name=data["name"],
                columns=data["columns"],
                rows=data.get("points") or (),
            )
        except KeyError as e:
            raise ValueError(f"Missing series key {e.args[0]!r}") from None


def dumps(tables: list[MeasurementTable]) -> str:
    """Serialize a batch of tables to a single-line JSON array."""
    return json.dumps([t.to_dict() for t in tables], separators=(",", ":"))


def loads(text: str) -> list[MeasurementTable]:
    """Parse a JSON array produced by :func:`dumps`."""
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of series")
    return [MeasurementTable.from_dict(item) for item in data]
