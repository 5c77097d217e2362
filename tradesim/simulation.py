"""
simulation.py - The Simulation aggregate and its command surface

One Simulation owns one of everything: clock, ledger, position book,
futures engine, period controller and event bus. Nothing is global, so any
number of simulations can run side by side.

Commands (purchase, sell, open_futures, close_futures, advance_period, save,
load) return a CommandResult:
- ok=True: applied; `value` carries the result
- ok=False: rejected with a recoverable error; state is unchanged

Configuration errors (missing market data, a period outside the scenario,
invalid market data) are not recoverable and propagate as exceptions.

Accepted trades are kept in `trade_log` (cleared by load).

With verbose=True each command prints a one-line trace.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Tuple, Type, Union

from .core import (
    Period, Exchange, Tenor, Direction, ShippingBasis, CommandResult,
    SimulationError, GameAlreadyEnded, AdvanceInProgress, UnknownEntity,
    Number, to_decimal,
)
from .clock import Clock
from .ledger import Ledger, LedgerSnapshot
from .market_data import MarketDataProvider, MonthData
from .positions.physical import PhysicalPosition, PositionBook
from .positions.futures import FuturesContractSpec, FuturesEngine, FuturesPosition
from .controller import PeriodController
from .events import EventBus, GameEnded
from .scenario import Scenario, load_scenario
from .quotes import PurchaseQuote, SaleQuote, quote_purchase, quote_sale
from .exposure import ExposureReport, calculate_exposure
from . import persistence


@dataclass(frozen=True)
class SimulationSnapshot:
    period: Period
    turn: int
    final_turn: int
    ended: bool
    ledger: LedgerSnapshot
    physical: Tuple[PhysicalPosition, ...]
    futures: Tuple[FuturesPosition, ...]


@dataclass(frozen=True)
class TradeRecord:
    """
    One accepted trade.

    amount is the cash effect at trade time: purchase cost (negative), sale
    revenue (positive, received at settlement), futures fees and realized P&L.
    """
    kind: str
    position_id: str
    turn: int
    period: Period
    quantity: Decimal
    amount: Decimal


def _coerce(enum_cls: Type[Enum], value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise UnknownEntity(f"Unknown {enum_cls.__name__}: {value!r}")


class Simulation:
    """
    A single game.

    Example:
        sim = Simulation(scenario, provider)
        result = sim.purchase("CALLAO_LTA", 5, Exchange.LME, ShippingBasis.CIF, "SHANGHAI")
        if result.ok:
            lot = result.value
        sim.advance_period()
    """

    def __init__(
        self,
        scenario: Scenario,
        provider: MarketDataProvider,
        contract_specs: Optional[Mapping[Exchange, FuturesContractSpec]] = None,
        verbose: bool = True,
    ):
        self.scenario = scenario
        self.provider = provider
        self.verbose = verbose

        self.bus = EventBus()
        self.clock = Clock(scenario.duration_months, scenario.periods_per_month)
        self.ledger = Ledger(
            starting_capital=scenario.starting_capital,
            credit_limit=scenario.credit_limit,
            margin_limit=scenario.margin_limit,
            credit_annual_rate=scenario.credit_annual_rate,
            periods_per_month=scenario.periods_per_month,
        )
        self.book = PositionBook(self.clock, self.ledger, self.bus)
        self.futures = FuturesEngine(self.clock, self.ledger, contract_specs)
        self.controller = PeriodController(
            scenario, self.clock, self.ledger, self.book, self.futures, provider, self.bus,
        )
        self._trades: List[TradeRecord] = []

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any], verbose: bool = True) -> 'Simulation':
        """Build a simulation from a scenario manifest with embedded month documents."""
        scenario, provider = load_scenario(manifest)
        return cls(scenario, provider, verbose=verbose)

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def current_period(self) -> Period:
        return self.controller.period

    @property
    def turn(self) -> int:
        return self.controller.turn

    @property
    def is_ended(self) -> bool:
        return self.controller.ended

    @property
    def month_data(self) -> MonthData:
        return self.controller.month_data

    @property
    def positions(self) -> Tuple[PhysicalPosition, ...]:
        """Copies of the active physical lots."""
        return tuple(copy.deepcopy(p) for p in self.book.active())

    @property
    def futures_positions(self) -> Tuple[FuturesPosition, ...]:
        return tuple(copy.deepcopy(f) for f in self.futures.active())

    @property
    def trade_log(self) -> Tuple[TradeRecord, ...]:
        """Accepted trades in the order they were made."""
        return tuple(self._trades)

    def trades_in_month(self, month: int) -> Tuple[TradeRecord, ...]:
        return tuple(t for t in self._trades if t.period.month == month)

    def _record(self, kind: str, position_id: str, quantity: Number, amount: Number) -> None:
        self._trades.append(TradeRecord(
            kind=kind,
            position_id=position_id,
            turn=self.turn,
            period=self.current_period,
            quantity=to_decimal(quantity),
            amount=to_decimal(amount),
        ))

    def snapshot(self) -> SimulationSnapshot:
        return SimulationSnapshot(
            period=self.current_period,
            turn=self.turn,
            final_turn=self.clock.final_turn,
            ended=self.is_ended,
            ledger=self.ledger.snapshot(),
            physical=self.positions,
            futures=self.futures_positions,
        )

    def exposure(self) -> ExposureReport:
        return calculate_exposure(self.book, self.futures, self.month_data, self.scenario.starting_capital)

    def quote_purchase(self, supplier: str, tonnage: Number, exchange, shipping_basis, destination: str) -> PurchaseQuote:
        return quote_purchase(
            self.month_data, supplier, destination,
            _coerce(ShippingBasis, shipping_basis), _coerce(Exchange, exchange), tonnage,
        )

    def quote_sale(self, region: str, tonnage: Number) -> SaleQuote:
        return quote_sale(self.month_data, region, tonnage)

    # ========================================================================
    # COMMANDS
    # ========================================================================

    def _run(self, label: str, action: Callable[[], Any]) -> CommandResult:
        try:
            value = action()
        except SimulationError as e:
            if not e.recoverable:
                raise
            if self.verbose:
                print(f"✗ REJECTED: {label}: {e}")
            return CommandResult.failure(e)
        return CommandResult.success(value)

    def _require_trading(self) -> None:
        if self.controller.ended:
            raise GameAlreadyEnded("Game has ended; no further trades are accepted")
        if self.controller.advancing:
            raise AdvanceInProgress("Cannot trade while a period advance is running")

    def purchase(
        self,
        supplier: str,
        tonnage: Number,
        exchange: Union[Exchange, str],
        shipping_basis: Union[ShippingBasis, str],
        destination: str,
    ) -> CommandResult:
        """Buy at this month's quote. value: the new PhysicalPosition."""
        def action():
            self._require_trading()
            quote = self.quote_purchase(supplier, tonnage, exchange, shipping_basis, destination)
            position = self.book.purchase(
                self.month_data, self.current_period, supplier, quote.tonnage,
                quote.cost_per_tonne, quote.total_cost, quote.exchange, quote.shipping_basis, destination,
            )
            self._record("BUY", position.id, position.tonnage, -position.total_cost)
            if self.verbose:
                print(f"📦 PURCHASED: {position.id} {position.tonnage} MT from {supplier} "
                      f"@ ${position.provisional_cost:,.2f}/MT, arrives {position.arrival_period}")
            return copy.deepcopy(position)
        return self._run("purchase", action)

    def sell(self, position_id: str, tonnage: Number, region: str) -> CommandResult:
        """Sell at this month's quote for `region`. value: SaleConfirmation."""
        def action():
            self._require_trading()
            quote = self.quote_sale(region, tonnage)
            confirmation = self.book.sell(
                self.month_data, self.current_period, position_id, quote.tonnage, region,
                quote.sale_price, quote.total_revenue,
            )
            self._record("SELL", confirmation.position_id, confirmation.tonnage, confirmation.total_revenue)
            if self.verbose:
                print(f"💰 SOLD: {position_id} {quote.tonnage} MT to {region} "
                      f"@ ${quote.sale_price:,.2f}/MT, settles {confirmation.settlement_period}")
            return confirmation
        return self._run("sell", action)

    def open_futures(
        self,
        exchange: Union[Exchange, str],
        tenor: Union[Tenor, str],
        direction: Union[Direction, str],
        contract_count: int,
    ) -> CommandResult:
        """value: the new FuturesPosition."""
        def action():
            self._require_trading()
            position = self.futures.open_position(
                self.month_data, self.current_period,
                _coerce(Exchange, exchange), _coerce(Tenor, tenor), _coerce(Direction, direction),
                contract_count,
            )
            fee = self.futures.specs[position.exchange].fee_per_contract * position.contract_count
            self._record("FUTURES_OPEN", position.id, position.contract_count, -fee)
            if self.verbose:
                print(f"📈 OPENED: {position.id} {position.direction.value} {position.contract_count} x "
                      f"{position.exchange.value} {position.tenor.value} @ ${position.entry_price:,.2f}")
            return copy.deepcopy(position)
        return self._run("open_futures", action)

    def close_futures(self, position_id: str) -> CommandResult:
        """value: FuturesClose with realized P&L and fee."""
        def action():
            self._require_trading()
            contracts = self.futures.get(position_id).contract_count
            closed = self.futures.close_position(position_id)
            self._record("FUTURES_CLOSE", position_id, contracts, closed.net_pl)
            if self.verbose:
                print(f"📉 CLOSED: {position_id} P&L ${closed.realized_pl:,.2f}, fee ${closed.fee:,.2f}")
            return closed
        return self._run("close_futures", action)

    def advance_period(self) -> CommandResult:
        """value: the PeriodAdvanced or GameEnded notification."""
        def action():
            event = self.controller.advance_period()
            if self.verbose:
                if isinstance(event, GameEnded):
                    print(f"🏁 GAME ENDED: net P&L ${event.final_pl:,.2f}, ROI {event.roi:.2f}%, {event.grade}")
                else:
                    print(f"⏩ {event.period} (turn {event.turn}): {len(event.settled_position_ids)} settled, "
                          f"{len(event.expired_futures_ids)} futures expired, interest ${event.interest_charged:,.2f}")
            return event
        return self._run("advance_period", action)

    def save(self) -> CommandResult:
        """value: the save dict (see persistence.SAVE_VERSION for its shape)."""
        def action():
            if self.controller.advancing:
                raise AdvanceInProgress("Cannot save while a period advance is running")
            return persistence.to_state_dict(self.controller)
        return self._run("save", action)

    def load(self, state: Union[Mapping[str, Any], str]) -> CommandResult:
        """Replace this simulation's state with a save dict or its JSON text."""
        def action():
            if self.controller.advancing:
                raise AdvanceInProgress("Cannot load while a period advance is running")
            raw = persistence.loads(state) if isinstance(state, str) else state
            saved = persistence.load_state(raw)
            persistence.apply_state(self.controller, saved)
            self._trades.clear()
            if self.verbose:
                print(f"📂 LOADED: {self.current_period} (turn {self.turn})")
            return self.current_period
        return self._run("load", action)

    def __repr__(self):
        return f"Simulation({self.scenario.scenario_id!r}, {self.controller!r})"
