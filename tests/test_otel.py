"""Tests for the OTLP push exporter, read back through an in-memory reader."""

from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from infra_agent.config import OtelExporterConfig
from infra_agent.exporter.otel import OtelExporter
from infra_agent.registry import MetricIdentity


def _points(reader):
    """Map metric name -> [(attributes, value)] from the reader's last collection."""
    points = {}
    data = reader.get_metrics_data()
    for rm in data.resource_metrics:
        for sm in rm.scope_metrics:
            for metric in sm.metrics:
                points[metric.name] = [
                    (dict(dp.attributes), dp.value) for dp in metric.data.data_points
                ]
    return points


class TestOtelExporter:
    def test_exports_snapshot_as_gauges(self, registry):
        registry.set(MetricIdentity("total_memory"), 8000, help="Total memory available")
        registry.set(MetricIdentity("node_cpu_seconds_total", {"cpu": "cpu0"}), 70.0)
        registry.add(MetricIdentity("node_disk_read_bytes_total", {"device": "sda"}), 100)

        reader = InMemoryMetricReader()
        exporter = OtelExporter(OtelExporterConfig(service_name="test-agent"), reader=reader)
        try:
            exporter.export(registry.snapshot())
            points = _points(reader)
        finally:
            exporter.shutdown()

        assert points["total_memory"] == [({}, 8000.0)]
        assert points["node_cpu_seconds_total"] == [({"cpu": "cpu0"}, 70.0)]
        assert points["node_disk_read_bytes_total"] == [({"device": "sda"}, 100.0)]

    def test_gauges_reused_across_exports(self, registry):
        ident = MetricIdentity("process_list", {"pid": "42", "name": "sshd"})
        registry.set(ident, 1)

        reader = InMemoryMetricReader()
        exporter = OtelExporter(OtelExporterConfig(), reader=reader)
        try:
            exporter.export(registry.snapshot())
            registry.set(MetricIdentity("process_list", {"pid": "99", "name": "nginx"}), 1)
            exporter.export(registry.snapshot())
            points = _points(reader)
        finally:
            exporter.shutdown()

        assert len(exporter._gauges) == 1
        attrs = sorted(p[0]["pid"] for p in points["process_list"])
        assert attrs == ["42", "99"]

    def test_resource_carries_service_name(self, registry):
        registry.set(MetricIdentity("g"), 1)
        reader = InMemoryMetricReader()
        exporter = OtelExporter(OtelExporterConfig(service_name="edge-node"), reader=reader)
        try:
            exporter.export(registry.snapshot())
            data = reader.get_metrics_data()
        finally:
            exporter.shutdown()
        resource = data.resource_metrics[0].resource
        assert resource.attributes["service.name"] == "edge-node"
