"""Signal detection strategies for PolyShark."""

from polyshark.strategies.adaptive import min_edge_for, select_mode
from polyshark.strategies.arbitrage import ArbitrageDetector

__all__ = [
    "ArbitrageDetector",
    "min_edge_for",
    "select_mode",
]
