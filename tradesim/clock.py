"""
clock.py - Period and turn arithmetic

Converts between:
- Turn numbers: global sequential counter, 1..final_turn
- Periods: (month, sub-period) pairs, month 1..total_months
- Days: absolute day numbers, used only for arrival arithmetic

Each month is split into equal windows (Early = days 1-15, Late = days 16-30
with the default two periods per month). Turn 1 is month 1 Early, turn 2 is
month 1 Late, and so on.

The Clock holds configuration only. It never mutates anything and can be
shared freely between components of one simulation.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_CEILING
from typing import Optional

from .core import (
    Period, SubPeriod, InvalidPeriod, Number,
    DAYS_PER_MONTH, QP_MONTH_OFFSET, SETTLEMENT_MONTH_OFFSET,
    to_decimal,
)


class Clock:
    """
    Pure conversions between turns and (month, sub-period) pairs.

    Example:
        clock = Clock(total_months=6)
        clock.turn_of(3, SubPeriod.EARLY)          # 5
        clock.period_of(12)                        # Period(6, LATE)
        clock.arrival_period(Period(1, 1), 28)     # Period(2, EARLY)
    """

    def __init__(
        self,
        total_months: int,
        periods_per_month: int = len(SubPeriod),
        days_per_month: int = DAYS_PER_MONTH,
    ):
        if total_months < 1:
            raise ValueError(f"total_months must be positive, got {total_months}")
        if not 1 <= periods_per_month <= len(SubPeriod):
            raise ValueError(
                f"periods_per_month must be between 1 and {len(SubPeriod)}, got {periods_per_month}"
            )
        if days_per_month < periods_per_month:
            raise ValueError(f"days_per_month too small: {days_per_month}")
        self.total_months = total_months
        self.periods_per_month = periods_per_month
        self.days_per_month = days_per_month

    # ========================================================================
    # BOUNDS
    # ========================================================================

    @property
    def final_turn(self) -> int:
        return self.total_months * self.periods_per_month

    @property
    def first_period(self) -> Period:
        return Period(1, SubPeriod.EARLY)

    @property
    def final_period(self) -> Period:
        return Period(self.total_months, SubPeriod(self.periods_per_month))

    def validate(self, month: int, sub_period: int) -> Period:
        """Return the Period for (month, sub_period), raising InvalidPeriod if out of range."""
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= self.total_months:
            raise InvalidPeriod(f"Invalid month: {month}. Must be 1-{self.total_months}.")
        try:
            sp = SubPeriod(int(sub_period))
        except (TypeError, ValueError):
            raise InvalidPeriod(f"Invalid sub-period: {sub_period}. Must be 1-{self.periods_per_month}.")
        if sp > self.periods_per_month:
            raise InvalidPeriod(f"Invalid sub-period: {sub_period}. Must be 1-{self.periods_per_month}.")
        return Period(month, sp)

    # ========================================================================
    # TURN <-> PERIOD
    # ========================================================================

    def turn_of(self, month: int, sub_period: int) -> int:
        """Global turn number for a (month, sub-period) pair."""
        period = self.validate(month, sub_period)
        return (period.month - 1) * self.periods_per_month + int(period.sub_period)

    def turn_of_period(self, period: Period) -> int:
        return self.turn_of(period.month, period.sub_period)

    def period_of(self, turn: int) -> Period:
        """(month, sub-period) pair for a global turn number."""
        if isinstance(turn, bool) or not isinstance(turn, int) or not 1 <= turn <= self.final_turn:
            raise InvalidPeriod(f"Invalid turn: {turn}. Must be 1-{self.final_turn}.")
        month = (turn - 1) // self.periods_per_month + 1
        sub_period = (turn - 1) % self.periods_per_month + 1
        return Period(month, SubPeriod(sub_period))

    def advance(self, period: Period) -> Optional[Period]:
        """
        Next period, or None once the final period has been played.

        None is the game-end marker: there is no period after the last one.
        """
        turn = self.turn_of_period(period)
        if turn >= self.final_turn:
            return None
        return self.period_of(turn + 1)

    def month_boundary_crossed(self, old: Period, new: Period) -> bool:
        return new.month != old.month

    def periods_between(self, start: Period, end: Period) -> int:
        """Number of turns from start to end, never negative."""
        return max(0, self.turn_of_period(end) - self.turn_of_period(start))

    # ========================================================================
    # BUSINESS OFFSETS
    # ========================================================================

    def _window_days(self) -> Decimal:
        return Decimal(self.days_per_month) / Decimal(self.periods_per_month)

    def midpoint_day(self, sub_period: SubPeriod) -> int:
        """
        Representative day of a sub-period window.

        With 30-day months and two windows: Early (days 1-15) -> day 8,
        Late (days 16-30) -> day 23.
        """
        window = self.days_per_month // self.periods_per_month
        start = (int(sub_period) - 1) * window + 1
        end = self.days_per_month if int(sub_period) == self.periods_per_month else int(sub_period) * window
        return (start + end) // 2

    def arrival_period(self, purchase: Period, travel_days: Number) -> Period:
        """
        Period in which a lot bought in `purchase` arrives after `travel_days`.

        The purchase sub-period is mapped to its midpoint day, travel days are
        added, and the absolute day is mapped back to a (month, sub-period).
        Arrivals beyond the scenario are clamped to the final period.
        """
        self.turn_of_period(purchase)
        days = to_decimal(travel_days)
        if days < 0:
            raise ValueError(f"travel_days must be non-negative, got {travel_days}")

        absolute_day = (purchase.month - 1) * self.days_per_month + self.midpoint_day(purchase.sub_period) + days
        month = int((absolute_day - 1) // self.days_per_month) + 1
        if month > self.total_months:
            return self.final_period

        day_in_month = absolute_day - (month - 1) * self.days_per_month
        window = (day_in_month / self._window_days()).to_integral_value(rounding=ROUND_CEILING)
        sub_period = min(self.periods_per_month, max(1, int(window)))
        return Period(month, SubPeriod(sub_period))

    def qp_month(self, purchase: Period) -> int:
        """Quotational-pricing month: the month after purchase. May lie beyond the scenario."""
        return purchase.month + QP_MONTH_OFFSET

    def settlement_period(self, purchase: Period) -> Period:
        """
        Settlement period for a lot bought in `purchase`.

        Purchase month + 2, Early: the first period after the QP month has
        fully elapsed. Clamped to the final period.
        """
        self.turn_of_period(purchase)
        month = purchase.month + SETTLEMENT_MONTH_OFFSET
        if month > self.total_months:
            return self.final_period
        return Period(month, SubPeriod.EARLY)

    def __repr__(self):
        return f"Clock({self.total_months} months x {self.periods_per_month} periods)"
