"""Exception hierarchy for infra_agent."""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all agent errors."""


class InvalidIdentity(AgentError, ValueError):
    """A metric identity is malformed or clashes with an existing instrument."""


class MetricKindError(AgentError, TypeError):
    """An operation is not legal for the instrument's kind."""


class StatsUnavailable(AgentError):
    """A system stats call failed or timed out."""

    def __init__(self, message: str, family: str = "") -> None:
        super().__init__(message)
        self.family = family


class ListenerBindFailure(AgentError):
    """The scrape endpoint could not bind its TCP port."""


class ConfigError(AgentError, ValueError):
    """Configuration contains an invalid value."""
