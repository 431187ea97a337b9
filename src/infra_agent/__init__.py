"""infra_agent – host telemetry agent exposing OS metrics over HTTP."""

__version__ = "0.1.0"
