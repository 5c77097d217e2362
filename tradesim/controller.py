"""
controller.py - Period Controller

Owns the advance sequence. Execution order each advance_period():
1. End the game instead, if the final period has been played: settle
   sales due by the final period, expire due futures, grade
2. Move the clock forward one period
3. On a new month: fetch its market data, reset monthly limits
4. Charge the interest computed at the end of the previous period
5. Positions: arrivals -> final pricing -> settlements
6. Futures: mark-to-market, then expiries
7. Compute interest due next period and publish one PeriodAdvanced

Advances are not re-entrant: a handler that calls advance_period() while an
advance is running gets AdvanceInProgress.
"""

from __future__ import annotations
from typing import Optional, Union

from .core import Period, GameAlreadyEnded, AdvanceInProgress
from .clock import Clock
from .ledger import Ledger
from .market_data import MarketDataProvider, MonthData
from .positions.physical import PositionBook
from .positions.futures import FuturesEngine
from .events import EventBus, PeriodAdvanced, GameEnded
from .scenario import Scenario, calculate_grade


class PeriodController:
    """
    Drives one simulation through time.

    Holds the current period and the current month's data; every other piece
    of state belongs to the ledger, the position book or the futures engine.
    """

    def __init__(
        self,
        scenario: Scenario,
        clock: Clock,
        ledger: Ledger,
        book: PositionBook,
        futures: FuturesEngine,
        provider: MarketDataProvider,
        bus: EventBus,
    ):
        self.scenario = scenario
        self.clock = clock
        self.ledger = ledger
        self.book = book
        self.futures = futures
        self.provider = provider
        self.bus = bus

        self.period: Period = clock.first_period
        self.month_data: MonthData = provider.get_month_data(self.period.month)
        self.ended = False
        self.final_result: Optional[GameEnded] = None
        self._advancing = False

    @property
    def turn(self) -> int:
        return self.clock.turn_of_period(self.period)

    @property
    def advancing(self) -> bool:
        return self._advancing

    def restore(self, period: Period, ended: bool) -> None:
        """Jump to a saved period. Used when loading a save."""
        self.clock.turn_of_period(period)
        self.month_data = self.provider.get_month_data(period.month)
        self.period = period
        self.ended = ended
        self.final_result = None

    def advance_period(self) -> Union[PeriodAdvanced, GameEnded]:
        """
        Advance one period, or end the game if the final period has been played.

        Raises:
            AdvanceInProgress: called from inside another advance
            GameAlreadyEnded: the game has already ended
            DataNotFound: the next month has no market data
        """
        if self._advancing:
            raise AdvanceInProgress("advance_period() is already running")
        if self.ended:
            raise GameAlreadyEnded(f"Game ended at turn {self.turn}")

        self._advancing = True
        try:
            return self._advance()
        finally:
            self._advancing = False

    def _advance(self) -> Union[PeriodAdvanced, GameEnded]:
        previous = self.period
        next_period = self.clock.advance(previous)
        if next_period is None:
            return self._end_game()

        month_changed = self.clock.month_boundary_crossed(previous, next_period)
        # Fetch first so a missing month leaves the simulation where it was
        month_data = self.provider.get_month_data(next_period.month) if month_changed else self.month_data

        self.period = next_period
        turn = self.turn
        if month_changed:
            self.month_data = month_data
            self.ledger.reset_monthly_limits()

        interest = self.ledger.charge_interest()

        arrived = self.book.update_status(turn)
        repriced = self.book.reprice_pending(next_period.month, self.provider)
        settlements = self.book.process_settlements(turn)

        expiries = self.futures.mark_to_market(self.month_data, turn)

        self.ledger.compute_interest_next_period()

        event = PeriodAdvanced(
            period=next_period,
            turn=turn,
            month_changed=month_changed,
            interest_charged=interest,
            arrived_position_ids=tuple(arrived),
            repriced_position_ids=tuple(repriced),
            settled_position_ids=settlements.position_ids,
            expired_futures_ids=expiries.position_ids,
            physical_pl=settlements.total_profit,
            futures_pl=expiries.total_pl - expiries.total_fees,
        )
        self.bus.publish(event)
        return event

    def _end_game(self) -> GameEnded:
        # Sales made and contracts opened during the final period close out now
        self.book.reprice_pending(self.period.month, self.provider)
        self.book.process_settlements(self.turn)
        self.futures.check_expiry(self.turn)
        net_pl = self.ledger.cumulative_total_pl - self.ledger.cumulative_interest
        report = calculate_grade(net_pl, self.scenario.starting_capital, self.scenario.scoring)
        event = GameEnded(final_pl=net_pl, roi=report.roi_pct, grade=report.grade, turn=self.turn)
        self.ended = True
        self.final_result = event
        self.bus.publish(event)
        return event

    def __repr__(self):
        state = "ended" if self.ended else f"turn {self.turn}/{self.clock.final_turn}"
        return f"PeriodController({self.period}, {state})"
