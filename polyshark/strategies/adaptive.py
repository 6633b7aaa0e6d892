"""Adaptive edge requirements.

The less daily allowance remains, the larger the edge a bundle must offer
before it is worth spending on.
"""
from decimal import Decimal

from polyshark.core.config import StrategyConfig
from polyshark.core.models import StrategyMode, to_decimal


def select_mode(remaining_fraction: float, config: StrategyConfig) -> StrategyMode:
    """Pick the strategy mode for the fraction of allowance left (0..1)."""
    if remaining_fraction < config.conservative_threshold:
        return StrategyMode.CONSERVATIVE
    if remaining_fraction > config.aggressive_threshold:
        return StrategyMode.AGGRESSIVE
    return StrategyMode.NORMAL


def min_edge_for(mode: StrategyMode, config: StrategyConfig) -> Decimal:
    """Minimum gross edge (spread per $1 bundle) a signal needs in `mode`."""
    if mode == StrategyMode.CONSERVATIVE:
        return to_decimal(config.min_edge_conservative)
    if mode == StrategyMode.AGGRESSIVE:
        return to_decimal(config.min_edge_aggressive)
    return to_decimal(config.min_edge_normal)
