"""Risk management module for PolyShark.

This module provides the two gates every new position must pass:
- RiskManager: circuit breaker on drawdown, daily loss, loss streaks and volatility
- SpendGuard: daily spending allowance
"""

from polyshark.risk.risk_manager import (
    RiskManager,
    RiskCheck,
    RiskState,
    create_risk_manager,
)
from polyshark.risk.spend_guard import SpendGuard, SpendSnapshot

__all__ = [
    'RiskManager',
    'RiskCheck',
    'RiskState',
    'create_risk_manager',
    'SpendGuard',
    'SpendSnapshot',
]
