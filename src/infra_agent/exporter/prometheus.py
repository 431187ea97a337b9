"""Prometheus exposition: registry collector, text formatter and ``/metrics`` server."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Iterator
from wsgiref.simple_server import WSGIServer

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from ..errors import ListenerBindFailure
from ..registry import InstrumentSample, MetricKind, MetricRegistry

logger = logging.getLogger(__name__)


def _families(samples: list[InstrumentSample]) -> Iterator[Metric]:
    """Group name-sorted samples into prometheus_client metric families."""
    for name, group in itertools.groupby(samples, key=lambda s: s.name):
        members = list(group)
        first = members[0]
        if first.kind is MetricKind.COUNTER:
            family: Metric = CounterMetricFamily(name, first.help)
            sample_name = f"{family.name}_total"
        else:
            family = GaugeMetricFamily(name, first.help)
            sample_name = name
        for s in members:
            family.add_sample(sample_name, s.labels, s.value)
        yield family


class _SnapshotCollector:
    """Feeds a fixed list of samples to prometheus_client's text renderer."""

    def __init__(self, samples: list[InstrumentSample]) -> None:
        self._samples = samples

    def collect(self) -> Iterator[Metric]:
        return _families(self._samples)


class RegistryCollector:
    """Custom collector that takes a fresh registry snapshot on every scrape."""

    def __init__(self, registry: MetricRegistry) -> None:
        self._registry = registry

    def collect(self) -> Iterator[Metric]:
        return _families(self._registry.snapshot())


class PrometheusFormatter:
    """Serialises registry samples into the Prometheus text format.

    Samples must arrive grouped by name, as :meth:`MetricRegistry.snapshot`
    returns them.
    """

    content_type = CONTENT_TYPE_LATEST

    def format(self, samples: list[InstrumentSample]) -> bytes:
        registry = CollectorRegistry(auto_describe=False)
        registry.register(_SnapshotCollector(samples))
        return generate_latest(registry)


class MetricsServer:
    """prometheus_client HTTP server exposing a :class:`MetricRegistry`.

    Scrapes only read the registry; each request takes its own snapshot
    through :class:`RegistryCollector`.
    """

    def __init__(self, registry: MetricRegistry, host: str = "0.0.0.0", port: int = 8083) -> None:
        self._host = host
        self._port = port
        self.collectors = CollectorRegistry(auto_describe=False)
        self.collectors.register(RegistryCollector(registry))
        self._httpd: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """Bound port (resolves ``0`` to the ephemeral port chosen)."""
        if self._httpd is None:
            return self._port
        return self._httpd.server_port

    def render(self) -> bytes:
        """Exposition text for the current registry contents."""
        return generate_latest(self.collectors)

    def start(self) -> None:
        """Bind and serve in a background thread.

        Raises :class:`ListenerBindFailure` if the address cannot be bound,
        including ports outside 0-65535.
        """
        if self._httpd is not None:
            return
        try:
            self._httpd, self._thread = start_http_server(
                self._port, addr=self._host, registry=self.collectors
            )
        except (OSError, OverflowError) as exc:
            raise ListenerBindFailure(f"cannot listen on {self._host}:{self._port}: {exc}") from exc
        logger.info("Serving metrics on http://%s:%d/metrics", self._host, self.port)

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None
        logger.info("Metrics server stopped")
