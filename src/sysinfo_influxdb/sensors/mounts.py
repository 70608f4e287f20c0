"""Free and total space of real filesystem mounts.

Reads /proc/mounts and calls statvfs(2) on every mount point that is not a
virtual filesystem.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import ClassVar

from ..errors import SamplerError
from ..table import MeasurementTable

# Filesystem types that never hold user data
VIRTUAL_FSTYPES: frozenset[str] = frozenset(
    {
        "binfmt_misc",
        "cgroup",
        "configfs",
        "debugfs",
        "devpts",
        "devtmpfs",
        "efivarfs",
        "fusectl",
        "mqueue",
        "none",
        "proc",
        "rootfs",
        "securityfs",
        "sysfs",
        "rpc_pipefs",
        "fuse.gvfsd-fuse",
        "tmpfs",
    }
)


def _unescape(field: str) -> str:
    """Decode the octal escapes /proc/mounts uses for spaces and tabs."""
    if "\\" not in field:
        return field
    return (
        field.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


class MountsReader:
    """One row per real mount: mount point, device, free and total bytes."""

    COLUMNS: ClassVar[list[str]] = ["mountpoint", "disk", "free", "total"]

    def __init__(
        self,
        name: str,
        proc_root: str = "/proc",
        statvfs: Callable[[str], os.statvfs_result] = os.statvfs,
    ) -> None:
        self._name = name
        self._mounts_path = Path(proc_root) / "mounts"
        self._statvfs = statvfs

    def read(self) -> MeasurementTable:
        rows = []
        for line in self._mounts_path.read_text().splitlines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 3:
                raise SamplerError(f"Malformed /proc/mounts line: {line!r}")

            device, mountpoint, fstype = parts[0], _unescape(parts[1]), parts[2]
            if fstype in VIRTUAL_FSTYPES or device == "none":
                continue

            st = self._statvfs(mountpoint)
            rows.append(
                (mountpoint, device, st.f_bfree * st.f_bsize, st.f_blocks * st.f_bsize)
            )

        return MeasurementTable(self._name, self.COLUMNS, rows)
