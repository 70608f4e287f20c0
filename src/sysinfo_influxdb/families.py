"""Metric families the collector knows how to sample."""

from __future__ import annotations

from enum import Enum

from .errors import ConfigError


class Family(str, Enum):
    """A named category of metrics; the value is its table-name suffix."""

    CPU = "cpu"
    CPUS = "cpus"
    MEM = "mem"
    SWAP = "swap"
    UPTIME = "uptime"
    LOAD = "load"
    NETWORK = "network"
    DISKS = "disks"
    MOUNTS = "mounts"

    @property
    def is_counter(self) -> bool:
        """True when the family reports cumulative counters that need diffing."""
        return self in _COUNTER_FAMILIES


_COUNTER_FAMILIES = frozenset({Family.CPU, Family.CPUS, Family.NETWORK, Family.DISKS})

ALL_FAMILIES: tuple[Family, ...] = tuple(Family)

DEFAULT_COLLECT = ",".join(f.value for f in ALL_FAMILIES)


def parse_families(arg: str) -> list[Family]:
    """Parse a comma-separated family list, keeping order and dropping repeats.

    Raises:
        ConfigError: If a name is not a known family or the list is empty.
    """
    families: list[Family] = []
    for part in arg.split(","):
        name = part.strip()
        if not name:
            continue
        try:
            family = Family(name)
        except ValueError:
            raise ConfigError(f"Unknown collect option {name!r}") from None
        if family not in families:
            families.append(family)

    if not families:
        raise ConfigError("Nothing to collect")
    return families
