"""Scheduler that runs sampler tasks on independent, supervised threads."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable

from ..config import AgentConfig
from ..errors import StatsUnavailable
from ..registry import InstrumentSample, MetricIdentity, MetricKind, MetricRegistry
from ..stats import SystemStatsProvider
from .base import CycleResult, SamplerTask
from .cpu import CpuSampler
from .disk import DiskCapacitySampler, DiskIOSampler
from .memory import MemorySampler
from .network import NetworkSampler
from .process import ProcessListSampler

logger = logging.getLogger(__name__)

Sink = Callable[[list[InstrumentSample]], None]

FAILURES_METRIC = "agent_sampler_failures_total"
RESTARTS_METRIC = "agent_sampler_restarts_total"
LAST_SUCCESS_METRIC = "agent_sampler_last_success_timestamp_seconds"


def build_tasks(config: AgentConfig) -> list[SamplerTask]:
    """Instantiate one sampler task per enabled family in *config*."""
    tasks: list[SamplerTask] = []
    samplers = config.samplers
    if "cpu" in samplers and samplers["cpu"].enabled:
        tasks.append(CpuSampler(samplers["cpu"].interval_seconds))
    if "memory" in samplers and samplers["memory"].enabled:
        tasks.append(MemorySampler(samplers["memory"].interval_seconds))
    if "disk" in samplers and samplers["disk"].enabled:
        tasks.append(DiskCapacitySampler(samplers["disk"].interval_seconds))
    if "diskio" in samplers and samplers["diskio"].enabled:
        tasks.append(DiskIOSampler(samplers["diskio"].interval_seconds))
    if "network" in samplers and samplers["network"].enabled:
        tasks.append(NetworkSampler(
            samplers["network"].interval_seconds,
            interface=samplers["network"].interface,
        ))
    if "process" in samplers and samplers["process"].enabled:
        tasks.append(ProcessListSampler(samplers["process"].interval_seconds))
    return tasks


class Scheduler:
    """Runs every sampler task on its own thread and cadence.

    Each task loop is supervised: a failed stats fetch is a failed cycle that
    leaves the family's previous values in place, and an unexpected exception
    restarts that task's loop after a short backoff.  Neither affects other
    tasks.  Optional sinks receive a registry snapshot every
    ``sink_interval`` seconds.
    """

    def __init__(
        self,
        registry: MetricRegistry,
        provider: SystemStatsProvider,
        *,
        source_timeout: float = 5.0,
        restart_backoff: float = 1.0,
        sink_interval: float = 10.0,
    ) -> None:
        self._registry = registry
        self._provider = provider
        self._source_timeout = source_timeout
        self._restart_backoff = restart_backoff
        self._sink_interval = sink_interval
        self._tasks: list[SamplerTask] = []
        self._sinks: list[Sink] = []
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._pending: dict[str, Future[Any]] = {}
        self.restarts: dict[str, int] = {}
        self.last_results: dict[str, CycleResult] = {}

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        registry: MetricRegistry,
        provider: SystemStatsProvider,
    ) -> Scheduler:
        scheduler = cls(
            registry,
            provider,
            source_timeout=config.scheduler.source_timeout_seconds,
            restart_backoff=config.scheduler.restart_backoff_seconds,
            sink_interval=config.scheduler.sink_interval_seconds,
        )
        for task in build_tasks(config):
            scheduler.add_task(task)
        return scheduler

    @property
    def tasks(self) -> list[SamplerTask]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def add_task(self, task: SamplerTask) -> None:
        if self.running:
            raise RuntimeError("cannot add tasks to a running scheduler")
        if any(t.family == task.family for t in self._tasks):
            raise ValueError(f"duplicate sampler family: {task.family}")
        self._tasks.append(task)
        self.restarts[task.family] = 0
        labels = {"family": task.family}
        self._registry.get_or_create(
            MetricIdentity(FAILURES_METRIC, labels),
            MetricKind.COUNTER,
            help="Sampler cycles that failed to read their data source",
        )
        self._registry.get_or_create(
            MetricIdentity(RESTARTS_METRIC, labels),
            MetricKind.COUNTER,
            help="Sampler loops restarted after an unexpected error",
        )

    def add_sink(self, sink: Sink) -> None:
        """Register a callback to receive periodic registry snapshots."""
        self._sinks.append(sink)

    # -- cycles ------------------------------------------------------------

    def _run_fetch(self, task: SamplerTask, future: Future[Any]) -> None:
        # Daemon thread: a source that never returns cannot block interpreter exit.
        try:
            future.set_result(task.fetch(self._provider))
        except Exception as exc:
            future.set_exception(exc)

    def _fetch(self, task: SamplerTask) -> Any:
        family = task.family
        previous = self._pending.get(family)
        if previous is not None and not previous.done():
            raise StatsUnavailable(f"{family}: previous fetch still running", family)

        future: Future[Any] = Future()
        fetcher = threading.Thread(
            target=self._run_fetch,
            args=(task, future),
            name=f"fetch-{family}",
            daemon=True,
        )
        self._pending[family] = future
        fetcher.start()
        try:
            return future.result(timeout=self._source_timeout)
        except FutureTimeout:
            raise StatsUnavailable(
                f"{family}: data source timed out after {self._source_timeout:.1f}s", family
            ) from None

    def run_cycle(self, task: SamplerTask) -> CycleResult:
        """Fetch and apply one cycle of *task*.

        :class:`StatsUnavailable` is turned into a failed :class:`CycleResult`;
        any other exception propagates to the caller.
        """
        family = task.family
        started = time.monotonic()
        try:
            data = self._fetch(task)
        except StatsUnavailable as exc:
            result = CycleResult.failure(family, str(exc), time.monotonic() - started)
            logger.warning("Sampler %s cycle failed: %s", family, exc)
            self._registry.add(MetricIdentity(FAILURES_METRIC, {"family": family}), 1)
        else:
            with self._registry.batch() as batch:
                task.update(batch, data)
                batch.set(
                    MetricIdentity(LAST_SUCCESS_METRIC, {"family": family}),
                    time.time(),
                    help="Unix time of the last successful sampler cycle",
                )
            result = CycleResult.success(family, time.monotonic() - started)
            logger.debug("Sampler %s cycle ok (%.3fs)", family, result.duration)
        self.last_results[family] = result
        return result

    def collect_once(self) -> list[CycleResult]:
        """Run one cycle of every task synchronously."""
        results: list[CycleResult] = []
        for task in self._tasks:
            try:
                results.append(self.run_cycle(task))
            except Exception as exc:
                logger.exception("Sampler %s failed", task.family)
                results.append(CycleResult.failure(task.family, repr(exc)))
        return results

    # -- threads -----------------------------------------------------------

    def _task_loop(self, task: SamplerTask) -> None:
        while not self._stop_event.is_set():
            self.run_cycle(task)
            self._stop_event.wait(task.interval_seconds)

    def _supervise(self, task: SamplerTask) -> None:
        """Run *task*'s loop, restarting it whenever it crashes."""
        while not self._stop_event.is_set():
            try:
                self._task_loop(task)
            except Exception:
                self.restarts[task.family] += 1
                self._registry.add(MetricIdentity(RESTARTS_METRIC, {"family": task.family}), 1)
                logger.exception(
                    "Sampler %s crashed, restarting in %.1fs",
                    task.family,
                    self._restart_backoff,
                )
                self._stop_event.wait(self._restart_backoff)

    def _publish_loop(self) -> None:
        while not self._stop_event.wait(self._sink_interval):
            self.publish()

    def publish(self) -> None:
        """Send the current registry snapshot to every sink."""
        samples = self._registry.snapshot()
        for sink in self._sinks:
            try:
                sink(samples)
            except Exception:
                logger.exception("Sink failed")

    def start(self) -> None:
        """Start every task on its own daemon thread."""
        if self.running:
            return
        self._stop_event.clear()
        for task in self._tasks:
            thread = threading.Thread(
                target=self._supervise,
                args=(task,),
                name=f"sampler-{task.family}",
                daemon=True,
            )
            self._threads.append(thread)
        if self._sinks:
            self._threads.append(
                threading.Thread(target=self._publish_loop, name="sink-publisher", daemon=True)
            )
        for thread in self._threads:
            thread.start()
        logger.info(
            "Scheduler started (%s)",
            ", ".join(f"{t.family}={t.interval_seconds:g}s" for t in self._tasks),
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Signal every task to exit and wait for them."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        self._pending.clear()
        logger.info("Scheduler stopped")
