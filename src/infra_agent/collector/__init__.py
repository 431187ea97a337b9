"""Sampler tasks and the scheduler that runs them."""

from .base import CycleResult, SamplerTask
from .manager import Scheduler

__all__ = ["CycleResult", "SamplerTask", "Scheduler"]
