"""Instantiate one sampler per configured family."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .families import Family

if TYPE_CHECKING:
    from .config import CollectorConfig
    from .table import MeasurementTable


class Sampler(Protocol):
    """Protocol for all sampler classes."""

    def read(self) -> MeasurementTable: ...


@dataclass(frozen=True)
class BoundSampler:
    """A sampler together with the family it reports."""

    family: Family
    name: str
    reader: Sampler


def build_samplers(config: CollectorConfig) -> list[BoundSampler]:
    """Build the samplers for ``config.families``, preserving their order."""
    from .sensors.diskstats import DiskstatsReader
    from .sensors.mounts import MountsReader
    from .sensors.network import NetworkReader
    from .sensors.procfs import (
        CpuReader,
        CpusReader,
        LoadReader,
        MemReader,
        SwapReader,
        UptimeReader,
    )

    readers = {
        Family.CPU: CpuReader,
        Family.CPUS: CpusReader,
        Family.MEM: MemReader,
        Family.SWAP: SwapReader,
        Family.UPTIME: UptimeReader,
        Family.LOAD: LoadReader,
        Family.NETWORK: NetworkReader,
        Family.DISKS: DiskstatsReader,
        Family.MOUNTS: MountsReader,
    }

    samplers: list[BoundSampler] = []
    for family in config.families:
        name = config.table_name(family)
        reader = readers[family](name, proc_root=config.proc_root)
        samplers.append(BoundSampler(family=family, name=name, reader=reader))
    return samplers
