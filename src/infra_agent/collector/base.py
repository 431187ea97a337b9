"""Base interface for periodic sampler tasks."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Hashable, Iterable

from ..registry import RegistryBatch
from ..stats import SystemStatsProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one sampler cycle: ok, or failed with a reason."""

    family: str
    ok: bool
    reason: str = ""
    duration: float = 0.0

    @classmethod
    def success(cls, family: str, duration: float = 0.0) -> CycleResult:
        return cls(family, True, "", duration)

    @classmethod
    def failure(cls, family: str, reason: str, duration: float = 0.0) -> CycleResult:
        return cls(family, False, reason, duration)


class SamplerTask(abc.ABC):
    """One metric family sampled on its own interval.

    A cycle is split in two: :meth:`fetch` talks to the stats provider and
    may be slow or fail, :meth:`update` turns the fetched data into registry
    writes and must be pure in-memory work.  The scheduler runs ``fetch``
    outside any registry lock and applies ``update``'s batch atomically.
    """

    default_interval: float = 1.0

    def __init__(self, interval_seconds: float | None = None) -> None:
        self.interval_seconds = interval_seconds or self.default_interval

    @property
    @abc.abstractmethod
    def family(self) -> str:
        """Family name used in configuration, logs and self-metrics."""

    @abc.abstractmethod
    def fetch(self, provider: SystemStatsProvider) -> Any:
        """Read this family's data from *provider*."""

    @abc.abstractmethod
    def update(self, batch: RegistryBatch, data: Any) -> None:
        """Queue registry writes for freshly fetched *data*."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(interval={self.interval_seconds}s)"


class CumulativeTracker:
    """Turns cumulative source totals into non-negative counter increments.

    The first observation of a key yields the full total.  A total lower than
    the previous one (device re-created, counter wrapped) yields zero and the
    tracker rebases on the new total.  Keys that vanish from the source are
    dropped with :meth:`prune`.
    """

    def __init__(self, family: str) -> None:
        self._family = family
        self._previous: dict[Hashable, float] = {}

    def delta(self, key: Hashable, total: float) -> float:
        total = float(total)
        prev = self._previous.get(key)
        self._previous[key] = total
        if prev is None:
            return total
        if total < prev:
            logger.warning(
                "%s counter for %s went backwards (%.0f -> %.0f), ignoring reset",
                self._family, key, prev, total,
            )
            return 0.0
        return total - prev

    def keys(self) -> list[Hashable]:
        return list(self._previous)

    def prune(self, live: Iterable[Hashable]) -> list[Hashable]:
        """Forget every key not in *live* and return the forgotten keys."""
        keep = set(live)
        gone = [key for key in self._previous if key not in keep]
        for key in gone:
            del self._previous[key]
        return gone

