"""Exception types raised by the collector."""

from __future__ import annotations


class SysinfoError(Exception):
    """Base class for all collector errors."""


class ConfigError(SysinfoError):
    """Invalid configuration; fatal at startup."""


class SamplerError(SysinfoError):
    """A sampler's data source was readable but malformed."""


class SinkError(SysinfoError):
    """Writing a batch of tables to the storage backend failed."""


class IncompleteLapError(SysinfoError):
    """One-shot mode gave up before any lap produced a complete result."""

    def __init__(self, laps: int, missing: list[str]) -> None:
        self.laps = laps
        self.missing = missing
        super().__init__(
            f"no complete lap after {laps} attempt(s); "
            f"still missing: {', '.join(missing) or 'none'}"
        )
