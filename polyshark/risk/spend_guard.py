"""Daily spending allowance enforcement.

The guard never resets itself from wall-clock time; the daily scheduler in
main.py calls reset() at the period boundary.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog

from polyshark.core.config import PermissionConfig
from polyshark.core.errors import InsufficientAllowanceError
from polyshark.core.models import ZERO, to_decimal
from polyshark.utils.locks import RWLock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SpendSnapshot:
    """Consistent copy of the spend budget."""
    daily_limit: Decimal
    spent_today: Decimal
    permission_active: bool

    @property
    def remaining(self) -> Decimal:
        return max(self.daily_limit - self.spent_today, ZERO)

    @property
    def remaining_fraction(self) -> float:
        if self.daily_limit <= 0:
            return 0.0
        return float(self.remaining / self.daily_limit)


class SpendGuard:
    """
    Spend budget for one period.

    Invariant: spent_today <= daily_limit after every successful record_spend.
    """

    def __init__(self, daily_limit: Decimal, permission_active: bool = True):
        self._daily_limit = to_decimal(daily_limit)
        self._spent_today = ZERO
        self._permission_active = permission_active
        self._lock = RWLock()

    @classmethod
    def from_config(cls, config: PermissionConfig) -> "SpendGuard":
        return cls(
            daily_limit=to_decimal(config.daily_limit),
            permission_active=config.permission_active,
        )

    def can_spend(self, amount: Decimal) -> bool:
        """True if spending `amount` keeps spent_today within the limit."""
        amount = to_decimal(amount)
        with self._lock.read():
            if not self._permission_active:
                return False
            return self._spent_today + amount <= self._daily_limit

    def record_spend(self, amount: Decimal) -> Decimal:
        """
        Record a spend that has already been matched by a successful fill.

        Args:
            amount: USDC actually committed

        Returns:
            New spent_today

        Raises:
            ValueError: amount is negative
            InsufficientAllowanceError: the spend would exceed the limit;
                the budget is left unchanged
        """
        amount = to_decimal(amount)
        if amount < 0:
            raise ValueError(f"Spend amount must be non-negative, got {amount}")

        with self._lock.write():
            if self._spent_today + amount > self._daily_limit:
                remaining = self._daily_limit - self._spent_today
                raise InsufficientAllowanceError(amount, remaining)
            self._spent_today += amount
            spent = self._spent_today

        logger.info(
            "spend_guard.spend_recorded",
            amount=str(amount),
            spent_today=str(spent),
            daily_limit=str(self._daily_limit),
        )
        return spent

    def reset(self):
        """Zero the period spend. Only the external scheduler calls this."""
        with self._lock.write():
            previous = self._spent_today
            self._spent_today = ZERO
        logger.info("spend_guard.reset", previous_spent=str(previous))

    def set_permission(self, active: bool, daily_limit: Optional[Decimal] = None):
        """Update the granted permission (e.g. after a new allowance grant)."""
        with self._lock.write():
            self._permission_active = active
            if daily_limit is not None:
                self._daily_limit = to_decimal(daily_limit)
        logger.info("spend_guard.permission_updated", active=active)

    def remaining(self) -> Decimal:
        return self.snapshot().remaining

    def snapshot(self) -> SpendSnapshot:
        with self._lock.read():
            return SpendSnapshot(
                daily_limit=self._daily_limit,
                spent_today=self._spent_today,
                permission_active=self._permission_active,
            )

    @property
    def spent_today(self) -> Decimal:
        with self._lock.read():
            return self._spent_today

    @property
    def daily_limit(self) -> Decimal:
        with self._lock.read():
            return self._daily_limit
