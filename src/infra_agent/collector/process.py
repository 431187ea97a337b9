"""Process list sampler."""

from __future__ import annotations

import logging

from ..registry import MetricIdentity, RegistryBatch
from ..stats import ProcessInfo, SystemStatsProvider
from .base import SamplerTask

logger = logging.getLogger(__name__)

PROCESS_FAMILY = "process_list"


class ProcessListSampler(SamplerTask):
    """Presence gauge (value 1) for every running ``(pid, name)`` pair.

    Each cycle resets the family and repopulates it inside one batch, so
    exited processes vanish from the next scrape and a scrape never sees the
    family half rebuilt.
    """

    default_interval = 10.0

    @property
    def family(self) -> str:
        return "process"

    def fetch(self, provider: SystemStatsProvider) -> list[ProcessInfo]:
        return provider.processes()

    def update(self, batch: RegistryBatch, data: list[ProcessInfo]) -> None:
        batch.reset_family(PROCESS_FAMILY)
        for proc in data:
            batch.set(
                MetricIdentity(PROCESS_FAMILY, {"pid": str(proc.pid), "name": proc.name}),
                1.0,
                help="List of processes running on the server",
            )
        logger.debug("Process list refreshed (%d processes)", len(data))
