"""Shared fixtures: a scriptable stats provider and a fresh registry."""

from __future__ import annotations

import time
from collections import Counter
from typing import Callable

import pytest

from infra_agent.errors import StatsUnavailable
from infra_agent.registry import MetricRegistry
from infra_agent.stats import (
    CpuTimes,
    DiskIOCounters,
    NetIOCounters,
    PartitionUsage,
    ProcessInfo,
    SwapMemory,
    SystemStatsProvider,
    VirtualMemory,
)


class StubStatsProvider(SystemStatsProvider):
    """Returns fixed readings; methods named in ``failing`` raise StatsUnavailable."""

    def __init__(self) -> None:
        self.cpu = [CpuTimes("cpu0", user=50.0, system=20.0, idle=30.0)]
        self.memory = VirtualMemory(
            total=8000, available=6000, used=2000, free=5000, buffers=100, cached=900
        )
        self.swap = SwapMemory(total=1000, free=750, used=250)
        self.parts = [PartitionUsage("/dev/sda1", "ext4", "/", total=1000, free=400)]
        self.disk_io = [DiskIOCounters("sda", read_bytes=100, write_bytes=50)]
        self.net_io = [NetIOCounters("eth0", bytes_recv=1000, bytes_sent=500)]
        self.procs = [ProcessInfo(1, "init"), ProcessInfo(42, "sshd")]
        self.failing: set[str] = set()
        self.delay = 0.0
        self.calls: Counter[str] = Counter()

    def _check(self, what: str) -> None:
        self.calls[what] += 1
        if self.delay:
            time.sleep(self.delay)
        if what in self.failing:
            raise StatsUnavailable(f"{what} unavailable")

    def cpu_times(self) -> list[CpuTimes]:
        self._check("cpu_times")
        return list(self.cpu)

    def virtual_memory(self) -> VirtualMemory:
        self._check("virtual_memory")
        return self.memory

    def swap_memory(self) -> SwapMemory:
        self._check("swap_memory")
        return self.swap

    def partitions(self) -> list[PartitionUsage]:
        self._check("partitions")
        return list(self.parts)

    def disk_io_counters(self) -> list[DiskIOCounters]:
        self._check("disk_io_counters")
        return list(self.disk_io)

    def net_io_counters(self) -> list[NetIOCounters]:
        self._check("net_io_counters")
        return list(self.net_io)

    def processes(self) -> list[ProcessInfo]:
        self._check("processes")
        return list(self.procs)


def values(registry: MetricRegistry, prefix: str = "") -> dict[str, float]:
    """Snapshot as ``{'name{labels}': value}`` for easy comparison."""
    return {str(s.identity): s.value for s in registry.snapshot(prefix)}


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def stub_provider() -> StubStatsProvider:
    return StubStatsProvider()


@pytest.fixture
def registry() -> MetricRegistry:
    return MetricRegistry()
