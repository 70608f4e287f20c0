"""Configuration for the collector."""

from __future__ import annotations

import math
import re
import socket
from dataclasses import dataclass, field

from .errors import ConfigError
from .families import ALL_FAMILIES, Family

# Display modes
DISPLAY_OFF = "off"
DISPLAY_TEXT = "text"
DISPLAY_JSON = "json"

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a Go-style duration (``1s``, ``250ms``, ``1m30s``) into seconds.

    A bare number is taken as seconds.

    Raises:
        ConfigError: If the string is not a valid duration.
    """
    value = text.strip()
    if not value:
        raise ConfigError("Empty duration")

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ConfigError(f"Invalid duration {text!r}")
        return seconds

    sign = 1.0
    if value[0] in "+-":
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]

    total = 0.0
    pos = 0
    while pos < len(value):
        match = _DURATION_PART.match(value, pos)
        if match is None:
            raise ConfigError(f"Invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return sign * total


def normalize_prefix(prefix: str) -> str:
    """Return ``prefix`` ending with a ``.`` separator, or ``""`` if empty."""
    if prefix and not prefix.endswith("."):
        return prefix + "."
    return prefix


@dataclass
class CollectorConfig:
    """Runtime configuration for the collector."""

    # Time between laps in seconds
    interval: float = 1.0

    # Window that deltas are expressed in, in seconds (0 = no scaling)
    consistency: float = 1.0

    # Loop forever instead of emitting a single complete lap
    daemon: bool = False

    # Families to sample, in output order
    families: list[Family] = field(default_factory=lambda: list(ALL_FAMILIES))

    # Table name prefix (normalized to end with ".")
    prefix: str = field(default_factory=socket.gethostname)

    # Append an "fqdn" column to every emitted table
    fqdn: bool = False

    # One of DISPLAY_OFF, DISPLAY_TEXT, DISPLAY_JSON
    display: str = DISPLAY_TEXT

    # InfluxDB connection; no sink when database is empty
    host: str = "localhost:8086"
    username: str = "root"
    password: str = "root"
    database: str = ""

    # Seconds a single sampler may take before its lap counts it as failed
    sampler_timeout: float = 10.0

    # One-shot mode: laps to attempt before giving up on a complete result
    max_laps: int = 10

    # Maximum daemon run duration in seconds (0 = unlimited)
    duration: float = 0.0

    # Root of the proc filesystem (overridable for tests)
    proc_root: str = "/proc"

    def __post_init__(self) -> None:
        self.prefix = normalize_prefix(self.prefix)

        for name in ("interval", "consistency", "sampler_timeout", "duration"):
            if not math.isfinite(getattr(self, name)):
                raise ConfigError(f"{name} must be finite, got {getattr(self, name)}")

        if self.interval <= 0:
            raise ConfigError(f"Interval must be positive, got {self.interval}s")
        if self.consistency < 0:
            raise ConfigError(
                f"Consistency window must not be negative, got {self.consistency}s"
            )
        if self.sampler_timeout <= 0:
            raise ConfigError(
                f"Sampler timeout must be positive, got {self.sampler_timeout}s"
            )
        if self.max_laps < 1:
            raise ConfigError(f"max_laps must be at least 1, got {self.max_laps}")
        if self.duration < 0:
            raise ConfigError(f"Duration must not be negative, got {self.duration}s")
        if self.display not in (DISPLAY_OFF, DISPLAY_TEXT, DISPLAY_JSON):
            raise ConfigError(f"Unknown display mode {self.display!r}")
        if not self.families:
            raise ConfigError("Nothing to collect")

    @property
    def consistency_factor(self) -> float:
        """Scale applied to every counter delta."""
        if self.consistency > 0:
            return self.consistency / self.interval
        return 1.0

    def table_name(self, family: Family) -> str:
        """Return the table name used for ``family``."""
        return f"{self.prefix}{family.value}"
