"""Tests for the scheduler: failure isolation, timeouts, supervision, sinks."""

import threading
import time

from infra_agent.collector.base import CycleResult, SamplerTask
from infra_agent.collector.cpu import CpuSampler
from infra_agent.collector.manager import FAILURES_METRIC, Scheduler, build_tasks
from infra_agent.collector.memory import MemorySampler
from infra_agent.collector.process import ProcessListSampler
from infra_agent.config import AgentConfig
from infra_agent.registry import MetricIdentity
from infra_agent.stats import CpuTimes, ProcessInfo, VirtualMemory

from conftest import values, wait_for


class _FlakyTask(SamplerTask):
    """Raises from update() on its first ``crashes`` cycles."""

    def __init__(self, crashes=1):
        super().__init__(0.01)
        self.crashes = crashes
        self.cycles = 0

    @property
    def family(self):
        return "flaky"

    def fetch(self, provider):
        return 1

    def update(self, batch, data):
        self.cycles += 1
        if self.cycles <= self.crashes:
            raise RuntimeError("sampler bug")
        batch.set(MetricIdentity("flaky_value"), data)


def _scheduler(registry, provider, *tasks, **kwargs):
    scheduler = Scheduler(registry, provider, **kwargs)
    for task in tasks:
        scheduler.add_task(task)
    return scheduler


class TestFailureIsolation:
    def test_failed_source_keeps_previous_values(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, CpuSampler(), MemorySampler())
        try:
            assert all(r.ok for r in scheduler.collect_once())
            cpu_before = values(registry, "cpu_")
            assert cpu_before['node_cpu_seconds_total{cpu="cpu0"}'] == 70.0

            stub_provider.failing.add("cpu_times")
            stub_provider.cpu = [CpuTimes("cpu0", user=99.0, idle=1.0)]
            for cycle in range(3):
                stub_provider.memory = VirtualMemory(
                    total=9000 + cycle, available=1, used=1
                )
                cpu_result, mem_result = scheduler.collect_once()
                assert not cpu_result.ok
                assert "unavailable" in cpu_result.reason
                assert mem_result.ok
                assert values(registry, "cpu_") == cpu_before
                assert values(registry)["total_memory"] == 9000 + cycle

            failures = registry.get(MetricIdentity(FAILURES_METRIC, {"family": "cpu"}))
            assert failures.value == 3
        finally:
            scheduler.stop()

    def test_failed_process_cycle_keeps_old_list(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, ProcessListSampler())
        try:
            scheduler.collect_once()
            before = values(registry, "process_list")
            stub_provider.failing.add("processes")
            stub_provider.procs = [ProcessInfo(7, "new")]
            scheduler.collect_once()
            assert values(registry, "process_list") == before
        finally:
            scheduler.stop()


class TestTimeouts:
    def test_slow_source_is_failed_cycle(self, registry, stub_provider):
        stub_provider.delay = 0.5
        scheduler = _scheduler(registry, stub_provider, CpuSampler(), source_timeout=0.05)
        try:
            result = scheduler.run_cycle(scheduler.tasks[0])
            assert not result.ok
            assert "timed out" in result.reason

            # the hung fetch is still occupying the task
            result = scheduler.run_cycle(scheduler.tasks[0])
            assert not result.ok
            assert "still running" in result.reason

            stub_provider.delay = 0.0
            time.sleep(0.6)
            assert scheduler.run_cycle(scheduler.tasks[0]).ok
        finally:
            scheduler.stop()

    def test_hung_fetch_runs_on_daemon_thread(self, registry, stub_provider):
        """A source that never returns must not keep the process alive after stop()."""
        stub_provider.delay = 0.5
        scheduler = _scheduler(registry, stub_provider, CpuSampler(), source_timeout=0.05)
        try:
            assert not scheduler.run_cycle(scheduler.tasks[0]).ok
            fetchers = [t for t in threading.enumerate() if t.name == "fetch-cpu"]
            assert fetchers
            assert all(t.daemon for t in fetchers)
        finally:
            scheduler.stop()

    def test_fetch_error_reaches_cycle(self, registry, stub_provider):
        stub_provider.failing.add("cpu_times")
        scheduler = _scheduler(registry, stub_provider, CpuSampler())
        result = scheduler.run_cycle(scheduler.tasks[0])
        assert not result.ok
        assert "cpu_times unavailable" in result.reason


class TestSupervision:
    def test_crashed_task_is_restarted(self, registry, stub_provider):
        flaky = _FlakyTask(crashes=2)
        scheduler = _scheduler(
            registry, stub_provider, flaky, CpuSampler(0.01), restart_backoff=0.01
        )
        scheduler.start()
        try:
            assert wait_for(lambda: registry.get(MetricIdentity("flaky_value")) is not None)
            assert scheduler.restarts["flaky"] == 2
            assert wait_for(lambda: "cpu" in scheduler.last_results)
            assert scheduler.last_results["cpu"].ok
        finally:
            scheduler.stop()
        assert not scheduler.running

    def test_collect_once_reports_crash(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, _FlakyTask())
        try:
            (result,) = scheduler.collect_once()
            assert isinstance(result, CycleResult)
            assert not result.ok
            assert "sampler bug" in result.reason
        finally:
            scheduler.stop()


class TestLifecycle:
    def test_tasks_run_on_their_own_cadence(self, registry, stub_provider):
        scheduler = _scheduler(
            registry, stub_provider, CpuSampler(0.01), ProcessListSampler(60.0)
        )
        scheduler.start()
        try:
            assert wait_for(lambda: stub_provider.calls["cpu_times"] >= 5)
            assert stub_provider.calls["processes"] == 1
        finally:
            scheduler.stop()

    def test_start_is_idempotent(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, CpuSampler(0.05))
        scheduler.start()
        scheduler.start()
        try:
            assert len(scheduler._threads) == 1
        finally:
            scheduler.stop()

    def test_cannot_add_while_running(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, CpuSampler(0.05))
        scheduler.start()
        try:
            try:
                scheduler.add_task(MemorySampler())
            except RuntimeError:
                pass
            else:
                raise AssertionError("expected RuntimeError")
        finally:
            scheduler.stop()

    def test_duplicate_family_rejected(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, CpuSampler())
        try:
            scheduler.add_task(CpuSampler())
        except ValueError:
            pass
        else:
            raise AssertionError("expected ValueError")


class TestSinks:
    def test_publish_sends_snapshot(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, MemorySampler())
        received = []
        scheduler.add_sink(received.append)
        scheduler.add_sink(lambda samples: 1 / 0)
        try:
            scheduler.collect_once()
            scheduler.publish()
        finally:
            scheduler.stop()
        assert len(received) == 1
        assert any(s.name == "total_memory" for s in received[0])

    def test_sink_loop_runs_in_background(self, registry, stub_provider):
        scheduler = _scheduler(registry, stub_provider, MemorySampler(), sink_interval=0.02)
        received = []
        scheduler.add_sink(received.append)
        scheduler.start()
        try:
            assert wait_for(lambda: len(received) >= 2)
        finally:
            scheduler.stop()


def test_build_tasks_honours_enabled_flags():
    cfg = AgentConfig()
    cfg.samplers["process"].enabled = False
    cfg.samplers["cpu"].interval_seconds = 2.5
    tasks = build_tasks(cfg)
    families = [t.family for t in tasks]
    assert families == ["cpu", "memory", "disk", "diskio", "network"]
    assert tasks[0].interval_seconds == 2.5
