"""Disk samplers: filesystem capacity and cumulative device I/O."""

from __future__ import annotations

from ..registry import MetricIdentity, RegistryBatch
from ..stats import DiskIOCounters, PartitionUsage, SystemStatsProvider
from .base import CumulativeTracker, SamplerTask

FILESYSTEM_PREFIX = "node_filesystem_"


class DiskCapacitySampler(SamplerTask):
    """Size and free space of every mounted filesystem.

    The family is cleared on every cycle so filesystems that were unmounted
    drop out of the next scrape.
    """

    default_interval = 10.0

    @property
    def family(self) -> str:
        return "disk"

    def fetch(self, provider: SystemStatsProvider) -> list[PartitionUsage]:
        return provider.partitions()

    def update(self, batch: RegistryBatch, data: list[PartitionUsage]) -> None:
        batch.reset_family(FILESYSTEM_PREFIX)
        for part in data:
            labels = {
                "device": part.device,
                "fstype": part.fstype,
                "mountpoint": part.mountpoint,
            }
            batch.set(
                MetricIdentity("node_filesystem_size_bytes", labels),
                float(part.total),
                help="Filesystem size in bytes",
            )
            batch.set(
                MetricIdentity("node_filesystem_avail_bytes", labels),
                float(part.free),
                help="Filesystem available space in bytes",
            )


class DiskIOSampler(SamplerTask):
    """Bytes read from and written to each block device."""

    default_interval = 1.0

    def __init__(self, interval_seconds: float | None = None) -> None:
        super().__init__(interval_seconds)
        self._tracker = CumulativeTracker(self.family)

    @property
    def family(self) -> str:
        return "diskio"

    def fetch(self, provider: SystemStatsProvider) -> list[DiskIOCounters]:
        return provider.disk_io_counters()

    def update(self, batch: RegistryBatch, data: list[DiskIOCounters]) -> None:
        live: list[MetricIdentity] = []
        for stat in data:
            labels = {"device": stat.device}
            read = MetricIdentity("node_disk_read_bytes_total", labels)
            written = MetricIdentity("node_disk_written_bytes_total", labels)
            batch.add(
                read,
                self._tracker.delta(read, stat.read_bytes),
                help="Total number of bytes read from disk",
            )
            batch.add(
                written,
                self._tracker.delta(written, stat.write_bytes),
                help="Total number of bytes written to disk",
            )
            live += [read, written]
        for identity in self._tracker.prune(live):
            batch.remove(identity)
