"""Monitoring and metrics for PolyShark."""

from polyshark.monitoring.metrics import AgentMetrics, MetricsCollector

__all__ = [
    "AgentMetrics",
    "MetricsCollector",
]
