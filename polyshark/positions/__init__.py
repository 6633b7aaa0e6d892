"""Position lifecycle management for PolyShark."""

from polyshark.positions.ledger import LedgerSnapshot, PositionLedger

__all__ = [
    "LedgerSnapshot",
    "PositionLedger",
]
