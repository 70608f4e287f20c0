"""Render a lap's tables for the operator, as aligned text or as JSON."""

from __future__ import annotations

import sys
from typing import TextIO

from .config import DISPLAY_JSON, DISPLAY_OFF
from .table import MeasurementTable, dumps, plain_value


def render_text(tables: list[MeasurementTable]) -> str:
    """Return the tab-separated table dump used by the text display mode."""
    lines: list[str] = []
    for index, table in enumerate(tables):
        lines.append("")
        lines.append(f"#{index}: {table.name}")
        lines.append("".join(f"| {col}\t" for col in table.columns) + "|")
        for row in table.rows:
            lines.append("| " + "".join(f"{plain_value(v)}\t| " for v in row))
    return "\n".join(lines) + "\n"


def render_json(tables: list[MeasurementTable]) -> str:
    """Return the batch as one JSON line."""
    return dumps(tables) + "\n"


def show(tables: list[MeasurementTable], mode: str, stream: TextIO | None = None) -> None:
    """Write ``tables`` to ``stream`` (stdout by default) in display ``mode``."""
    if mode == DISPLAY_OFF:
        return
    out = stream if stream is not None else sys.stdout
    out.write(render_json(tables) if mode == DISPLAY_JSON else render_text(tables))
    out.flush()
