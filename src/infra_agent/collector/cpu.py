"""CPU sampler."""

from __future__ import annotations

from ..registry import MetricIdentity, RegistryBatch
from ..stats import CpuTimes, SystemStatsProvider
from .base import SamplerTask

# Modes exported under node_cpu_seconds, in exposition order.
CPU_MODES = ("idle", "iowait", "irq", "nice", "softirq", "steal", "system", "user")

# Dashboard-facing names: per-core usage and idle percentages.
USAGE_METRIC = "node_cpu_seconds_total"
IDLE_METRIC = "cpu_idle"


def cpu_usage_percent(total: float, idle: float) -> tuple[float, float]:
    """Return ``(usage%, idle%)`` for cumulative *total* and *idle* times.

    A zero total reports 0% usage.
    """
    if total <= 0:
        return 0.0, 100.0
    usage = 100.0 * (total - idle) / total
    return usage, 100.0 - usage


class CpuSampler(SamplerTask):
    """Per-core CPU time breakdown and derived usage/idle percentages."""

    default_interval = 1.0

    @property
    def family(self) -> str:
        return "cpu"

    def fetch(self, provider: SystemStatsProvider) -> list[CpuTimes]:
        return provider.cpu_times()

    def update(self, batch: RegistryBatch, data: list[CpuTimes]) -> None:
        for times in data:
            for mode in CPU_MODES:
                batch.set(
                    MetricIdentity("node_cpu_seconds", {"cpu": times.cpu, "mode": mode}),
                    getattr(times, mode),
                    help="CPU seconds by mode",
                )
            usage, idle = cpu_usage_percent(times.total, times.idle)
            labels = {"cpu": times.cpu}
            batch.set(
                MetricIdentity(USAGE_METRIC, labels),
                usage,
                help="CPU usage percentage",
            )
            batch.set(
                MetricIdentity(IDLE_METRIC, labels),
                idle,
                help="CPU idle percentage",
            )
