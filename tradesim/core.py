"""
core.py - Shared types, constants and errors for the trading simulation.

This module provides the foundational pieces every other module builds on:
1. Decimal context: deterministic arithmetic for money and tonnage
2. Enums: sub-periods, exchanges, tenors, directions, position statuses
3. Immutable data structures: Period, CommandResult
4. Exceptions: SimulationError and the domain-specific error kinds
5. Helpers: Decimal coercion

Nothing in this module holds mutable state. Components import from here,
never from each other's internals.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum, IntEnum
from typing import Any, Optional, Union


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# The simulation must replay identically for identical inputs, so every money
# and tonnage value is a Decimal under one global context.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_SIM_DECIMAL_CONTEXT = getcontext()
_SIM_DECIMAL_CONTEXT.prec = 50
_SIM_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-9")

ZERO = Decimal("0")

# Days per month used for arrival arithmetic (two 15-day halves).
DAYS_PER_MONTH = 30

# Fixed business offsets, in months, from the purchase month.
QP_MONTH_OFFSET = 1
SETTLEMENT_MONTH_OFFSET = 2

Number = Union[Decimal, int, float, str]


# ============================================================================
# ENUMS
# ============================================================================

class SubPeriod(IntEnum):
    """Half-month trading window."""
    EARLY = 1
    LATE = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Exchange(Enum):
    """Exchange whose curve prices a physical lot or futures contract."""
    LME = "LME"
    COMEX = "COMEX"


class Tenor(Enum):
    """
    Futures contract tenor.

    The value is the display label; `months` is how far the contract reaches
    along the curve and therefore how long it lives before expiry.
    """
    M1 = "M+1"
    M3 = "M+3"
    M12 = "M+12"

    @property
    def months(self) -> int:
        return {"M+1": 1, "M+3": 3, "M+12": 12}[self.value]


class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class ShippingBasis(Enum):
    FOB = "FOB"
    CIF = "CIF"


class LogisticsStatus(Enum):
    """Physical axis of a lot. Time-driven and irreversible."""
    IN_TRANSIT = "IN_TRANSIT"
    ARRIVED = "ARRIVED"


class SaleStatus(Enum):
    """Commercial axis of a lot, independent of LogisticsStatus."""
    UNSOLD = "UNSOLD"
    SOLD_PENDING_SETTLEMENT = "SOLD_PENDING_SETTLEMENT"


class FuturesStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class SimulationError(Exception):
    """
    Base exception for all simulation errors.

    `recoverable` separates validation failures (the caller may retry with
    different input, state is untouched) from configuration errors (the core
    refuses to proceed).
    """
    recoverable = True


class InvalidPeriod(SimulationError):
    """Raised when a month, sub-period or turn is outside the scenario."""
    recoverable = False


class InvalidQuantity(SimulationError):
    """Raised when a tonnage, price or contract count is not positive."""
    pass


class CapacityExceeded(SimulationError):
    """Raised when a purchase exceeds the supplier's remaining monthly capacity."""
    pass


class RegionCapacityExceeded(CapacityExceeded):
    """Raised when a sale exceeds the buyer region's remaining monthly demand."""
    pass


class InsufficientBuyingPower(SimulationError):
    """Raised when a purchase costs more than cash plus available credit."""
    pass


class InsufficientInventory(SimulationError):
    """Raised when selling more than a lot holds, or a lot that is already sold."""
    pass


class DestinationMismatch(SimulationError):
    """Raised when a lot is sold to a region whose port is not the lot's destination."""
    pass


class MarginLimitExceeded(SimulationError):
    """Raised when a new futures position would push aggregate margin over the limit."""
    pass


class PositionNotFound(SimulationError):
    """Raised when a position id is not in the active set."""
    pass


class UnknownEntity(SimulationError):
    """Raised when a supplier, buyer region or route is not offered in the current month."""
    pass


class GameAlreadyEnded(SimulationError):
    """Raised by any command issued after the game has ended."""
    pass


class AdvanceInProgress(SimulationError):
    """Raised when advance_period() is re-entered before the current advance completes."""
    pass


class DataNotFound(SimulationError):
    """Raised when month data is missing for a requested month."""
    recoverable = False


class InvalidMarketData(SimulationError):
    """Raised when a scenario manifest or month document fails validation. Carries every error found."""
    recoverable = False

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class SaveVersionMismatch(SimulationError):
    """Raised when a save cannot be migrated to the current version or does not fit this scenario."""
    pass


# ============================================================================
# PERIOD
# ============================================================================

@dataclass(frozen=True, slots=True)
class Period:
    """
    A (month, sub-period) pair.

    Ordering follows time. Range checks against the scenario length live in
    Clock, which is the only component that knows how many months there are.
    """
    month: int
    sub_period: SubPeriod

    def __post_init__(self):
        if not isinstance(self.sub_period, SubPeriod):
            try:
                object.__setattr__(self, 'sub_period', SubPeriod(int(self.sub_period)))
            except (TypeError, ValueError):
                raise InvalidPeriod(f"Invalid sub-period: {self.sub_period}. Must be 1 or 2.")

    def __lt__(self, other: 'Period') -> bool:
        return (self.month, self.sub_period) < (other.month, other.sub_period)

    def __le__(self, other: 'Period') -> bool:
        return (self.month, self.sub_period) <= (other.month, other.sub_period)

    def __str__(self) -> str:
        return f"M{self.month}-{self.sub_period.label}"


# ============================================================================
# COMMAND RESULT
# ============================================================================

@dataclass(frozen=True, slots=True)
class CommandResult:
    """
    Outcome of a command issued through the Simulation surface.

    ok=True: the command was applied; `value` carries its return value.
    ok=False: the command was rejected and state is unchanged; `error` holds
              the typed exception describing why.
    """
    ok: bool
    value: Any = None
    error: Optional[SimulationError] = None

    @classmethod
    def success(cls, value: Any = None) -> 'CommandResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: SimulationError) -> 'CommandResult':
        return cls(ok=False, error=error)

    @property
    def error_kind(self) -> Optional[str]:
        """Name of the error class, e.g. 'CapacityExceeded'."""
        return type(self.error).__name__ if self.error is not None else None

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ""


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Number) -> Decimal:
    """Coerce a number to Decimal via its string form, rejecting non-finite values."""
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    if d.is_nan() or d.is_infinite():
        raise ValueError(f"value must be finite, got {value}")
    return d
