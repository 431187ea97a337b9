"""Process-wide metric registry.

The registry owns every metric instrument the agent exposes.  Sampler tasks
write into it, the scrape endpoint reads :meth:`MetricRegistry.snapshot`.

Locking is two-level: a structural lock guards the identity → instrument
mapping and is only ever held for in-memory work, and each instrument carries
its own value lock.  Writes that must be seen together (a family reset
followed by its repopulation) go through :meth:`MetricRegistry.batch`, which
applies all queued operations under the structural lock so a snapshot sees
either none or all of them.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Union

from .errors import InvalidIdentity, MetricKindError

logger = logging.getLogger(__name__)

LabelsLike = Union[Mapping[str, str], Iterable[tuple[str, str]], None]


class MetricKind(str, enum.Enum):
    GAUGE = "gauge"
    COUNTER = "counter"


@dataclass(frozen=True)
class MetricIdentity:
    """Metric name plus label set.

    Labels are normalised to a tuple of ``(key, value)`` pairs sorted by key,
    so two identities compare equal regardless of the order labels were given
    in.  Empty names, empty label keys and duplicate label keys are rejected.
    """

    name: str
    labels: LabelsLike = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidIdentity("metric name must not be empty")
        raw = self.labels.items() if isinstance(self.labels, Mapping) else (self.labels or ())
        pairs: list[tuple[str, str]] = []
        seen: set[str] = set()
        for key, value in raw:
            if not key:
                raise InvalidIdentity(f"empty label key on metric {self.name!r}")
            if key in seen:
                raise InvalidIdentity(f"duplicate label key {key!r} on metric {self.name!r}")
            seen.add(key)
            pairs.append((str(key), str(value)))
        object.__setattr__(self, "labels", tuple(sorted(pairs)))

    @property
    def label_dict(self) -> dict[str, str]:
        return dict(self.labels)  # type: ignore[arg-type]

    def __str__(self) -> str:
        if not self.labels:
            return self.name
        inner = ",".join(f'{k}="{v}"' for k, v in self.labels)  # type: ignore[union-attr]
        return f"{self.name}{{{inner}}}"


@dataclass(frozen=True)
class InstrumentSample:
    """Immutable copy of one instrument, as returned by a snapshot."""

    identity: MetricIdentity
    kind: MetricKind
    value: float
    help: str = ""

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def labels(self) -> dict[str, str]:
        return self.identity.label_dict


class MetricInstrument:
    """A gauge or monotonic counter holding a single float value."""

    __slots__ = ("identity", "kind", "help", "_value", "_lock")

    def __init__(self, identity: MetricIdentity, kind: MetricKind, help: str = "") -> None:
        self.identity = identity
        self.kind = kind
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        """Overwrite a gauge.  On a counter the value is clamped to never decrease."""
        value = float(value)
        with self._lock:
            if self.kind is MetricKind.COUNTER:
                if math.isnan(value) or value < self._value:
                    logger.debug("Ignoring decreasing set on counter %s", self.identity)
                    return
            self._value = value

    def add(self, delta: float) -> None:
        _check_add(self.kind, self.identity, delta)
        with self._lock:
            self._value += float(delta)

    def sample(self) -> InstrumentSample:
        return InstrumentSample(self.identity, self.kind, self.value, self.help)

    def __repr__(self) -> str:
        return f"MetricInstrument({self.identity}, {self.kind.value}, {self.value})"


def _check_add(kind: MetricKind | None, identity: MetricIdentity, delta: float) -> None:
    if kind is MetricKind.GAUGE:
        raise MetricKindError(f"add() is not allowed on gauge {identity}")
    if math.isnan(delta) or delta < 0:
        raise MetricKindError(f"counter {identity} cannot be incremented by {delta}")


def _matches(identity: MetricIdentity, prefix: str) -> bool:
    return identity.name.startswith(prefix)


@dataclass(frozen=True)
class _Op:
    action: str
    identity: MetricIdentity | None = None
    value: float = 0.0
    kind: MetricKind | None = None
    help: str = ""
    prefix: str = ""


class RegistryBatch:
    """Queue of registry writes applied atomically when the batch closes."""

    def __init__(self) -> None:
        self._ops: list[_Op] = []

    def reset_family(self, prefix: str) -> None:
        self._ops.append(_Op("reset", prefix=prefix))

    def set(
        self,
        identity: MetricIdentity,
        value: float,
        kind: MetricKind = MetricKind.GAUGE,
        help: str = "",
    ) -> None:
        self._ops.append(_Op("set", identity, float(value), kind, help))

    def add(self, identity: MetricIdentity, delta: float, help: str = "") -> None:
        _check_add(None, identity, delta)
        self._ops.append(_Op("add", identity, float(delta), MetricKind.COUNTER, help))

    def remove(self, identity: MetricIdentity) -> None:
        self._ops.append(_Op("remove", identity))

    def __len__(self) -> int:
        return len(self._ops)


class MetricRegistry:
    """Owns the mapping from :class:`MetricIdentity` to :class:`MetricInstrument`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instruments: dict[MetricIdentity, MetricInstrument] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._instruments)

    def get(self, identity: MetricIdentity) -> MetricInstrument | None:
        with self._lock:
            return self._instruments.get(identity)

    def get_or_create(
        self,
        identity: MetricIdentity,
        kind: MetricKind = MetricKind.GAUGE,
        help: str = "",
    ) -> MetricInstrument:
        """Return the instrument for *identity*, creating it at zero if needed.

        Asking for an existing identity with a different kind raises
        :class:`InvalidIdentity`.
        """
        with self._lock:
            return self._get_or_create_locked(identity, kind, help)

    def _get_or_create_locked(
        self, identity: MetricIdentity, kind: MetricKind, help: str
    ) -> MetricInstrument:
        inst = self._instruments.get(identity)
        if inst is None:
            inst = MetricInstrument(identity, kind, help)
            self._instruments[identity] = inst
        elif inst.kind is not kind:
            raise InvalidIdentity(
                f"{identity} already registered as {inst.kind.value}, not {kind.value}"
            )
        return inst

    def set(self, identity: MetricIdentity, value: float, help: str = "") -> None:
        """Set an instrument's value, creating a gauge if it does not exist."""
        with self._lock:
            inst = self._instruments.get(identity) or self._get_or_create_locked(
                identity, MetricKind.GAUGE, help
            )
            inst.set(value)

    def add(self, identity: MetricIdentity, delta: float, help: str = "") -> None:
        """Increment a counter, creating it if it does not exist."""
        with self._lock:
            inst = self._instruments.get(identity) or self._get_or_create_locked(
                identity, MetricKind.COUNTER, help
            )
            inst.add(delta)

    def remove(self, identity: MetricIdentity) -> bool:
        """Drop a single instrument.  Returns False if it was not registered."""
        with self._lock:
            return self._instruments.pop(identity, None) is not None

    def reset_family(self, prefix: str) -> int:
        """Remove every instrument whose name starts with *prefix*."""
        with self._lock:
            return self._reset_locked(prefix)

    def _reset_locked(self, prefix: str) -> int:
        doomed = [ident for ident in self._instruments if _matches(ident, prefix)]
        for ident in doomed:
            del self._instruments[ident]
        return len(doomed)

    def families(self) -> list[str]:
        with self._lock:
            return sorted({ident.name for ident in self._instruments})

    def snapshot(self, prefix: str = "") -> list[InstrumentSample]:
        """Point-in-time copy of all instruments, sorted by name and labels."""
        with self._lock:
            samples = [
                inst.sample()
                for ident, inst in self._instruments.items()
                if not prefix or _matches(ident, prefix)
            ]
        samples.sort(key=lambda s: (s.identity.name, s.identity.labels))
        return samples

    @contextmanager
    def batch(self) -> Iterator[RegistryBatch]:
        """Collect writes and apply them as one unit on exit.

        If the ``with`` block raises, nothing is applied.
        """
        batch = RegistryBatch()
        yield batch
        self.apply(batch)

    def apply(self, batch: RegistryBatch) -> None:
        ops = batch._ops
        if not ops:
            return
        with self._lock:
            self._validate_locked(ops)
            for op in ops:
                if op.action == "reset":
                    self._reset_locked(op.prefix)
                    continue
                if op.action == "remove":
                    self._instruments.pop(op.identity, None)
                    continue
                assert op.identity is not None and op.kind is not None
                inst = self._instruments.get(op.identity) or self._get_or_create_locked(
                    op.identity, op.kind, op.help
                )
                if op.action == "set":
                    inst.set(op.value)
                else:
                    inst.add(op.value)

    def _validate_locked(self, ops: list[_Op]) -> None:
        # Dry run so a kind clash aborts the batch before anything is mutated.
        shadow: dict[MetricIdentity, MetricKind | None] = {}
        resets: list[str] = []
        for op in ops:
            if op.action == "reset":
                for ident in shadow:
                    if _matches(ident, op.prefix):
                        shadow[ident] = None
                resets.append(op.prefix)
                continue
            ident = op.identity
            assert ident is not None
            if op.action == "remove":
                shadow[ident] = None
                continue
            if ident in shadow:
                current = shadow[ident]
            elif any(_matches(ident, p) for p in resets):
                current = None
            else:
                existing = self._instruments.get(ident)
                current = existing.kind if existing else None
            if op.action == "add":
                _check_add(current, ident, op.value)
            elif current is not None and current is not op.kind:
                raise InvalidIdentity(
                    f"{ident} already registered as {current.value}, not {op.kind.value}"
                )
            shadow[ident] = current or op.kind
