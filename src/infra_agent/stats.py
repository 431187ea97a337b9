"""System statistics sources consumed by the sampler tasks."""

from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import psutil

from .errors import StatsUnavailable

logger = logging.getLogger(__name__)

CPU_TIME_FIELDS = (
    "user",
    "system",
    "nice",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative CPU time breakdown (seconds) for one core."""

    cpu: str
    user: float = 0.0
    system: float = 0.0
    nice: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0

    @property
    def total(self) -> float:
        return sum(getattr(self, f) for f in CPU_TIME_FIELDS)


@dataclass(frozen=True)
class VirtualMemory:
    total: int
    available: int
    used: int
    free: int = 0
    buffers: int = 0
    cached: int = 0


@dataclass(frozen=True)
class SwapMemory:
    total: int
    free: int
    used: int = 0


@dataclass(frozen=True)
class PartitionUsage:
    device: str
    fstype: str
    mountpoint: str
    total: int
    free: int


@dataclass(frozen=True)
class DiskIOCounters:
    device: str
    read_bytes: int
    write_bytes: int


@dataclass(frozen=True)
class NetIOCounters:
    interface: str
    bytes_recv: int
    bytes_sent: int


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str


class SystemStatsProvider(abc.ABC):
    """Source of OS resource counters.

    Every method returns a fresh reading or raises :class:`StatsUnavailable`.
    """

    @abc.abstractmethod
    def cpu_times(self) -> list[CpuTimes]:
        """Per-core CPU time breakdown."""

    @abc.abstractmethod
    def virtual_memory(self) -> VirtualMemory:
        """Physical memory totals."""

    @abc.abstractmethod
    def swap_memory(self) -> SwapMemory:
        """Swap totals."""

    @abc.abstractmethod
    def partitions(self) -> list[PartitionUsage]:
        """Mounted filesystems with their capacity."""

    @abc.abstractmethod
    def disk_io_counters(self) -> list[DiskIOCounters]:
        """Cumulative per-device disk I/O."""

    @abc.abstractmethod
    def net_io_counters(self) -> list[NetIOCounters]:
        """Cumulative per-interface network I/O."""

    @abc.abstractmethod
    def processes(self) -> list[ProcessInfo]:
        """Current process table."""


@contextmanager
def _unavailable_on_error(what: str) -> Iterator[None]:
    try:
        yield
    except (psutil.Error, OSError) as exc:
        raise StatsUnavailable(f"{what}: {exc}") from exc


class PsutilStatsProvider(SystemStatsProvider):
    """:class:`SystemStatsProvider` backed by psutil."""

    def __init__(self, all_partitions: bool = False) -> None:
        self._all_partitions = all_partitions

    def cpu_times(self) -> list[CpuTimes]:
        with _unavailable_on_error("cpu times"):
            per_cpu = psutil.cpu_times(percpu=True)
        return [
            CpuTimes(
                cpu=f"cpu{idx}",
                **{f: float(getattr(t, f, 0.0)) for f in CPU_TIME_FIELDS},
            )
            for idx, t in enumerate(per_cpu)
        ]

    def virtual_memory(self) -> VirtualMemory:
        with _unavailable_on_error("virtual memory"):
            mem = psutil.virtual_memory()
        return VirtualMemory(
            total=mem.total,
            available=mem.available,
            used=mem.used,
            free=mem.free,
            # buffers/cached only exist on some platforms
            buffers=getattr(mem, "buffers", 0),
            cached=getattr(mem, "cached", 0),
        )

    def swap_memory(self) -> SwapMemory:
        with _unavailable_on_error("swap memory"):
            swap = psutil.swap_memory()
        return SwapMemory(total=swap.total, free=swap.free, used=swap.used)

    def partitions(self) -> list[PartitionUsage]:
        with _unavailable_on_error("disk partitions"):
            parts = psutil.disk_partitions(all=self._all_partitions)
        result: list[PartitionUsage] = []
        for part in parts:
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (psutil.Error, OSError) as exc:
                logger.debug("Skipping partition %s: %s", part.mountpoint, exc)
                continue
            result.append(PartitionUsage(
                device=part.device,
                fstype=part.fstype,
                mountpoint=part.mountpoint,
                total=usage.total,
                free=usage.free,
            ))
        return result

    def disk_io_counters(self) -> list[DiskIOCounters]:
        with _unavailable_on_error("disk io counters"):
            counters = psutil.disk_io_counters(perdisk=True) or {}
        return [
            DiskIOCounters(device=name, read_bytes=c.read_bytes, write_bytes=c.write_bytes)
            for name, c in counters.items()
        ]

    def net_io_counters(self) -> list[NetIOCounters]:
        with _unavailable_on_error("network io counters"):
            counters = psutil.net_io_counters(pernic=True)
        return [
            NetIOCounters(interface=name, bytes_recv=c.bytes_recv, bytes_sent=c.bytes_sent)
            for name, c in counters.items()
        ]

    def processes(self) -> list[ProcessInfo]:
        result: list[ProcessInfo] = []
        with _unavailable_on_error("process table"):
            for proc in psutil.process_iter(["pid", "name"]):
                try:
                    name = proc.info.get("name") or ""
                    result.append(ProcessInfo(pid=proc.info["pid"], name=name))
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    continue
        return result
