"""Metric exporters: Prometheus pull endpoint and OTLP push."""
