"""Simulated order execution for PolyShark."""

from polyshark.execution.simulator import (
    ExecutionSimulator,
    FeeSchedule,
    LatencyModel,
    simulate_fill,
)

__all__ = [
    "ExecutionSimulator",
    "FeeSchedule",
    "LatencyModel",
    "simulate_fill",
]
