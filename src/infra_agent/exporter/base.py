"""Base interface for snapshot exporters."""

from __future__ import annotations

import abc

from ..registry import InstrumentSample


class BaseExporter(abc.ABC):
    """Abstract base for exporters that receive registry snapshots."""

    @abc.abstractmethod
    def export(self, samples: list[InstrumentSample]) -> None:
        """Export one registry snapshot."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Flush and release resources."""
