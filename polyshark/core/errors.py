"""Exception types for the PolyShark agent.

Only ConfigError is allowed to escape the trading loop. The others are raised
at component boundaries and recovered within a single cycle.
"""
from decimal import Decimal
from typing import Optional


class PolySharkError(Exception):
    """Base class for all agent errors."""


class FetchError(PolySharkError):
    """Market or order book retrieval failed or timed out."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"{source} fetch failed: {detail}")


class InsufficientAllowanceError(PolySharkError):
    """A spend would exceed the remaining daily allowance."""

    def __init__(self, requested: Decimal, remaining: Decimal):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Insufficient allowance: requested {requested}, remaining {remaining}"
        )


class RiskHaltError(PolySharkError):
    """The risk gate refused a new position."""

    def __init__(self, reason: str, rule: Optional[str] = None):
        self.reason = reason
        self.rule = rule
        super().__init__(reason)


class ConfigError(PolySharkError):
    """Configuration is malformed or incomplete."""
