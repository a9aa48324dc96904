"""
Cost Ledger

Tracks committed provider spend against a hard per-period ceiling. Every
provider call is preceded by a reservation; the reservation is committed
with the actual cost on success and rolled back on failure or cancellation.
All mutations run under one asyncio lock so concurrent generations cannot
jointly overshoot the ceiling.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Any

from ..config import get_budget_config
from ..config.database import DatabaseManager
from ..errors import BudgetExceededError
from ..utils import get_gateway_logger

logger = get_gateway_logger()

# Float tolerance when comparing dollar amounts
_EPSILON = 1e-9


class ReservationStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Reservation:
    """An approved, not yet settled, spending allowance."""
    reservation_id: str
    amount: float
    period_key: str
    tier: Optional[str] = None
    status: ReservationStatus = ReservationStatus.PENDING
    charged: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CostLedger:
    """Atomic reserve / commit / rollback against a spending ceiling."""

    def __init__(self,
                 ceiling: Optional[float] = None,
                 period: Optional[str] = None,
                 db_manager: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        budget_config = get_budget_config()
        self.ceiling = ceiling if ceiling is not None else budget_config.ceiling
        self.period = (period or budget_config.period).lower()
        if self.period not in ("monthly", "daily"):
            raise ValueError(f"Unknown budget period: {self.period}")

        self.db_manager = db_manager
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()

        self._period_key: Optional[str] = None
        self._committed = 0.0
        self._ceiling_override: Optional[float] = None
        self._outstanding: Dict[str, Reservation] = {}

        self._refresh_period()

    def _current_period_key(self) -> str:
        now = self._clock()
        if self.period == "daily":
            return now.strftime("%Y-%m-%d")
        return now.strftime("%Y-%m")

    def _refresh_period(self) -> None:
        """Load committed spend when the period changes (or on first use)."""
        period_key = self._current_period_key()
        if period_key == self._period_key:
            return

        self._period_key = period_key
        self._committed = 0.0

        if self.db_manager is not None:
            row = self.db_manager.load_ledger(period_key)
            if row:
                self._committed = row["committed_spend"] or 0.0
                if row.get("ceiling") is not None:
                    self._ceiling_override = row["ceiling"]
                    self.ceiling = row["ceiling"]

        logger.info(f"Cost ledger period {period_key}: committed ${self._committed:.4f} of ${self.ceiling:.2f}")

    def _persist(self, period_key: str, committed: float) -> None:
        if self.db_manager is not None:
            self.db_manager.save_ledger(period_key, committed, self._ceiling_override)

    def _reserved_total(self) -> float:
        return sum(r.amount for r in self._outstanding.values())

    async def reserve(self, estimated_cost: float, tier: Optional[str] = None) -> Reservation:
        """
        Reserve ``estimated_cost`` against the ceiling.

        Raises:
            BudgetExceededError: if committed spend plus outstanding
                reservations plus this estimate would exceed the ceiling
        """
        if estimated_cost < 0:
            raise ValueError("estimated_cost must be non-negative")

        async with self._lock:
            self._refresh_period()
            reserved = self._reserved_total()
            remaining = self.ceiling - self._committed - reserved

            if self._committed >= self.ceiling - _EPSILON:
                logger.warning("Reservation rejected: ceiling reached", requested=estimated_cost)
                raise BudgetExceededError(
                    f"Spending ceiling of ${self.ceiling:.2f} reached for {self._period_key}",
                    requested=estimated_cost,
                    remaining=0.0
                )

            if estimated_cost > remaining + _EPSILON:
                logger.warning(
                    "Reservation rejected: insufficient budget",
                    requested=round(estimated_cost, 6),
                    remaining=round(max(remaining, 0.0), 6)
                )
                raise BudgetExceededError(
                    f"Estimated cost ${estimated_cost:.4f} exceeds remaining budget ${max(remaining, 0.0):.4f}",
                    requested=estimated_cost,
                    remaining=max(remaining, 0.0)
                )

            reservation = Reservation(
                reservation_id=uuid.uuid4().hex,
                amount=estimated_cost,
                period_key=self._period_key,
                tier=tier
            )
            self._outstanding[reservation.reservation_id] = reservation
            logger.debug(
                "Reserved budget",
                reservation_id=reservation.reservation_id,
                amount=round(estimated_cost, 6),
                tier=tier
            )
            return reservation

    async def commit(self, reservation: Reservation, actual_cost: float) -> float:
        """
        Convert a reservation into committed spend.

        The charge is capped at the reserved amount and at the remaining
        headroom, so committed spend never exceeds the ceiling.

        Returns:
            The amount actually charged
        """
        async with self._lock:
            if reservation.status != ReservationStatus.PENDING:
                raise ValueError(f"Reservation {reservation.reservation_id} is already {reservation.status.value}")

            self._outstanding.pop(reservation.reservation_id, None)
            charge = max(0.0, actual_cost)

            if charge > reservation.amount + _EPSILON:
                logger.warning(
                    "Actual cost exceeded reservation, capping charge",
                    reservation_id=reservation.reservation_id,
                    reserved=round(reservation.amount, 6),
                    actual=round(actual_cost, 6)
                )
                charge = reservation.amount

            self._refresh_period()
            if reservation.period_key == self._period_key:
                charge = min(charge, max(0.0, self.ceiling - self._committed))
                self._committed += charge
                self._persist(self._period_key, self._committed)
            else:
                # Reservation made in a period that has since rolled over
                previous = 0.0
                if self.db_manager is not None:
                    row = self.db_manager.load_ledger(reservation.period_key)
                    previous = row["committed_spend"] if row else 0.0
                self._persist(reservation.period_key, previous + charge)

            reservation.status = ReservationStatus.COMMITTED
            reservation.charged = charge
            logger.debug("Committed spend", reservation_id=reservation.reservation_id, charged=round(charge, 6))
            return charge

    async def rollback(self, reservation: Reservation) -> None:
        """Release a pending reservation. No-op if already settled."""
        async with self._lock:
            if reservation.status != ReservationStatus.PENDING:
                return
            self._outstanding.pop(reservation.reservation_id, None)
            reservation.status = ReservationStatus.ROLLED_BACK
            logger.debug("Rolled back reservation", reservation_id=reservation.reservation_id)

    async def release_unspent(self, reservation: Reservation, spent: float) -> float:
        """
        Settle a reservation whose work failed part-way.

        Spend already billed by the provider is committed; the rest of the
        reservation is released. With nothing spent this is a rollback.

        Returns:
            The amount charged
        """
        if spent <= 0:
            await self.rollback(reservation)
            return 0.0
        if reservation.status != ReservationStatus.PENDING:
            return reservation.charged
        return await self.commit(reservation, spent)

    async def set_ceiling(self, amount: float) -> None:
        """Explicit user override of the spending ceiling for this period."""
        if amount <= 0:
            raise ValueError("ceiling must be positive")
        async with self._lock:
            self._refresh_period()
            logger.warning(f"Spending ceiling changed from ${self.ceiling:.2f} to ${amount:.2f}")
            self.ceiling = amount
            self._ceiling_override = amount
            self._persist(self._period_key, self._committed)

    @property
    def committed(self) -> float:
        return self._committed

    def get_status(self) -> Dict[str, Any]:
        """Get current ledger status."""
        self._refresh_period()
        reserved = self._reserved_total()
        return {
            "period": self._period_key,
            "ceiling": self.ceiling,
            "committed": round(self._committed, 6),
            "reserved": round(reserved, 6),
            "remaining": round(max(0.0, self.ceiling - self._committed - reserved), 6),
            "outstanding_reservations": len(self._outstanding),
        }
