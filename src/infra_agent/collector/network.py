"""Network I/O sampler."""

from __future__ import annotations

from ..registry import MetricIdentity, RegistryBatch
from ..stats import NetIOCounters, SystemStatsProvider
from .base import CumulativeTracker, SamplerTask


class NetworkSampler(SamplerTask):
    """Bytes received and transmitted per network interface.

    Interfaces are taken from the current counter list on every cycle, so
    interfaces that appear after startup are picked up without extra tasks.
    """

    default_interval = 1.0

    def __init__(self, interval_seconds: float | None = None, interface: str = "") -> None:
        super().__init__(interval_seconds)
        self._interface = interface
        self._tracker = CumulativeTracker(self.family)

    @property
    def family(self) -> str:
        return "network"

    def fetch(self, provider: SystemStatsProvider) -> list[NetIOCounters]:
        counters = provider.net_io_counters()
        if self._interface:
            counters = [c for c in counters if c.interface == self._interface]
        return counters

    def update(self, batch: RegistryBatch, data: list[NetIOCounters]) -> None:
        live: list[MetricIdentity] = []
        for nio in data:
            labels = {"interface": nio.interface, "unit": "bytes"}
            recv = MetricIdentity("node_network_receive_bytes_total", labels)
            sent = MetricIdentity("node_network_transmit_bytes_total", labels)
            batch.add(
                recv,
                self._tracker.delta(recv, nio.bytes_recv),
                help="Total number of bytes received on network interface",
            )
            batch.add(
                sent,
                self._tracker.delta(sent, nio.bytes_sent),
                help="Total number of bytes transmitted on network interface",
            )
            live += [recv, sent]
        # Interfaces that disappeared (containers, VPN tunnels) lose their series.
        for identity in self._tracker.prune(live):
            batch.remove(identity)
