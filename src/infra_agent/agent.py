"""Agent assembly: registry, scheduler, scrape endpoint and optional OTLP push."""

from __future__ import annotations

import logging

from .collector.manager import Scheduler
from .config import AgentConfig
from .exporter.base import BaseExporter
from .exporter.prometheus import MetricsServer
from .registry import MetricRegistry
from .stats import PsutilStatsProvider, SystemStatsProvider

logger = logging.getLogger(__name__)


class Agent:
    """Owns one metric registry and everything that reads or writes it.

    Usage::

        agent = Agent(load_config())
        agent.start()      # raises ListenerBindFailure if the port is taken
        ...
        agent.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        provider: SystemStatsProvider | None = None,
        registry: MetricRegistry | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or MetricRegistry()
        if provider is None:
            disk_cfg = config.samplers.get("disk")
            provider = PsutilStatsProvider(all_partitions=bool(disk_cfg and disk_cfg.all_partitions))
        self.provider = provider
        self.scheduler = Scheduler.from_config(config, self.registry, provider)
        self.server = MetricsServer(self.registry, config.listen.host, config.listen.port)
        self._exporters: list[BaseExporter] = []

        if config.otel.enabled:
            from .exporter.otel import OtelExporter

            self.add_exporter(OtelExporter(config.otel))

    def add_exporter(self, exporter: BaseExporter) -> None:
        self._exporters.append(exporter)
        self.scheduler.add_sink(exporter.export)

    @property
    def port(self) -> int:
        return self.server.port

    def start(self) -> None:
        """Bind the scrape endpoint, then start sampling.

        The listener is bound first so a bind failure aborts before any
        sampler thread exists.
        """
        self.server.start()
        self.scheduler.start()
        logger.info("Agent started on port %d", self.port)

    def stop(self) -> None:
        self.scheduler.stop()
        self.server.stop()
        for exp in self._exporters:
            exp.shutdown()
        logger.info("Agent stopped")
