"""Memory sampler."""

from __future__ import annotations

from ..registry import MetricIdentity, RegistryBatch
from ..stats import SwapMemory, SystemStatsProvider, VirtualMemory
from .base import SamplerTask

_BYTES = {"unit": "bytes"}


class MemorySampler(SamplerTask):
    """Physical and swap memory totals."""

    default_interval = 5.0

    @property
    def family(self) -> str:
        return "memory"

    def fetch(self, provider: SystemStatsProvider) -> tuple[VirtualMemory, SwapMemory]:
        return provider.virtual_memory(), provider.swap_memory()

    def update(self, batch: RegistryBatch, data: tuple[VirtualMemory, SwapMemory]) -> None:
        mem, swap = data
        values = [
            ("total_memory", None, mem.total, "Total memory available"),
            ("free_memory", None, mem.available, "Free memory available"),
            ("used_memory", None, mem.used, "Used memory"),
            ("node_memory_MemTotal_bytes", _BYTES, mem.total,
             "Total amount of memory in bytes."),
            ("node_memory_MemAvailable_bytes", _BYTES, mem.available,
             "Amount of available memory in bytes."),
            ("node_memory_Buffers_bytes", _BYTES, mem.buffers,
             "Buffer memory usage in bytes"),
            ("node_memory_Cached_bytes", _BYTES, mem.cached,
             "Cached memory usage in bytes"),
            ("node_memory_SwapTotal_bytes", _BYTES, swap.total,
             "Total swap memory available in bytes"),
            ("node_memory_SwapFree_bytes", _BYTES, swap.free,
             "Free swap memory available in bytes"),
        ]
        for name, labels, value, help in values:
            batch.set(MetricIdentity(name, labels), float(value), help=help)
