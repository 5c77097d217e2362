"""
futures.py - Exchange futures with margin netting

=== THE MARGIN MODEL ===

Margin is charged per contract and netted per (exchange, tenor) group:

    offset_pairs = min(long contracts, short contracts)
    net          = |long contracts - short contracts|
    group margin = offset_pairs * offset_margin + net * full_margin

Aggregate margin is the sum over groups. A new position is accepted only if
the aggregate, including it, stays within the margin limit. Later price moves
never reject anything retroactively.

Posted margin is funded from cash: every change in the aggregate moves the
difference between cash and margin_posted.

=== P&L ===

    unrealized = (current - entry) * multiplier * contracts * sign

with multiplier = contract size in tonnes and sign = +1 LONG / -1 SHORT.
A fee per contract is charged on open and again on close; both are booked
to cumulative futures P&L.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..core import (
    Period, Exchange, Tenor, Direction, FuturesStatus,
    MarginLimitExceeded, PositionNotFound, InvalidQuantity, InsufficientBuyingPower,
    Number, ZERO, to_decimal,
)
from ..clock import Clock
from ..ledger import Ledger
from ..market_data import MonthData


FUTURES_ID_PREFIX = "FUT"


# ============================================================================
# CONTRACT SPECIFICATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class FuturesContractSpec:
    """
    Immutable contract terms for one exchange.

    contract_size is in tonnes and doubles as the price multiplier, since
    prices are quoted per tonne.
    """
    exchange: Exchange
    contract_size: Decimal
    full_margin: Decimal
    offset_margin: Decimal
    fee_per_contract: Decimal

    def __post_init__(self):
        for name in ('contract_size', 'full_margin', 'offset_margin', 'fee_per_contract'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if self.contract_size <= 0:
            raise ValueError(f"contract_size must be positive, got {self.contract_size}")
        if self.offset_margin > self.full_margin:
            raise ValueError("offset_margin cannot exceed full_margin")

    @property
    def multiplier(self) -> Decimal:
        return self.contract_size


# LME: 25 t per contract. COMEX: 25,000 lb = 11.34 t per contract.
DEFAULT_CONTRACT_SPECS: Mapping[Exchange, FuturesContractSpec] = {
    Exchange.LME: FuturesContractSpec(Exchange.LME, "25", "10000", "1000", "25"),
    Exchange.COMEX: FuturesContractSpec(Exchange.COMEX, "11.34", "5000", "500", "25"),
}


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(slots=True)
class FuturesPosition:
    id: str
    exchange: Exchange
    tenor: Tenor
    direction: Direction
    contract_count: int
    tonnage: Decimal
    entry_price: Decimal
    current_price: Decimal
    open_period: Period
    open_turn: int
    expiry_turn: int
    unrealized_pl: Decimal = ZERO
    status: FuturesStatus = FuturesStatus.OPEN


@dataclass(frozen=True, slots=True)
class FuturesClose:
    position_id: str
    realized_pl: Decimal
    fee: Decimal
    reason: str

    @property
    def net_pl(self) -> Decimal:
        return self.realized_pl - self.fee


@dataclass(frozen=True, slots=True)
class ExpiryReport:
    closes: Tuple[FuturesClose, ...] = ()

    @property
    def total_pl(self) -> Decimal:
        return sum((c.realized_pl for c in self.closes), ZERO)

    @property
    def total_fees(self) -> Decimal:
        return sum((c.fee for c in self.closes), ZERO)

    @property
    def position_ids(self) -> Tuple[str, ...]:
        return tuple(c.position_id for c in self.closes)


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def margin_with_netting(
    positions: Iterable[FuturesPosition],
    specs: Mapping[Exchange, FuturesContractSpec] = DEFAULT_CONTRACT_SPECS,
) -> Decimal:
    """
    Aggregate margin for a set of open positions, netting longs against
    shorts within each (exchange, tenor) group.

    Example:
        3 LME M+3 longs and 3 LME M+3 shorts -> 3 * offset_margin
    """
    longs: Dict[Tuple[Exchange, Tenor], int] = defaultdict(int)
    shorts: Dict[Tuple[Exchange, Tenor], int] = defaultdict(int)
    for p in positions:
        if p.status is not FuturesStatus.OPEN:
            continue
        book = longs if p.direction is Direction.LONG else shorts
        book[(p.exchange, p.tenor)] += p.contract_count

    total = ZERO
    for key in set(longs) | set(shorts):
        spec = specs[key[0]]
        offset_pairs = min(longs[key], shorts[key])
        net = abs(longs[key] - shorts[key])
        total += offset_pairs * spec.offset_margin + net * spec.full_margin
    return total


def calculate_unrealized_pl(position: FuturesPosition, price: Number, spec: FuturesContractSpec) -> Decimal:
    price = to_decimal(price)
    return (price - position.entry_price) * spec.multiplier * position.contract_count * position.direction.sign


def calculate_expiry_turn(clock: Clock, open_turn: int, tenor: Tenor) -> int:
    """Open turn plus the tenor's months in turns, capped at the final turn."""
    return min(open_turn + tenor.months * clock.periods_per_month, clock.final_turn)


# ============================================================================
# FUTURES ENGINE
# ============================================================================

class FuturesEngine:
    """
    Owns every open futures position and keeps posted margin in step with them.
    """

    def __init__(
        self,
        clock: Clock,
        ledger: Ledger,
        specs: Optional[Mapping[Exchange, FuturesContractSpec]] = None,
    ):
        self.clock = clock
        self.ledger = ledger
        self.specs: Dict[Exchange, FuturesContractSpec] = dict(specs or DEFAULT_CONTRACT_SPECS)
        self.positions: Dict[str, FuturesPosition] = {}
        self.next_id = 1

    def _allocate_id(self) -> str:
        position_id = f"{FUTURES_ID_PREFIX}-{self.next_id:04d}"
        self.next_id += 1
        return position_id

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, position_id: str) -> FuturesPosition:
        try:
            return self.positions[position_id]
        except KeyError:
            raise PositionNotFound(f"Futures position {position_id} not found")

    def active(self) -> List[FuturesPosition]:
        return list(self.positions.values())

    def aggregate_margin(self) -> Decimal:
        return margin_with_netting(self.positions.values(), self.specs)

    def net_tonnage(self, exchange: Optional[Exchange] = None) -> Decimal:
        """Long tonnage minus short tonnage."""
        return sum(
            (p.tonnage * p.direction.sign for p in self.positions.values()
             if exchange is None or p.exchange is exchange),
            ZERO,
        )

    def total_unrealized_pl(self) -> Decimal:
        return sum((p.unrealized_pl for p in self.positions.values()), ZERO)

    # ========================================================================
    # OPEN / CLOSE
    # ========================================================================

    def open_position(
        self,
        month_data: MonthData,
        period: Period,
        exchange: Exchange,
        tenor: Tenor,
        direction: Direction,
        contract_count: int,
    ) -> FuturesPosition:
        """
        Open `contract_count` contracts at the current tenor price.

        The position is checked against the margin limit together with every
        open position; if the netted aggregate would exceed the limit nothing
        changes.

        Raises:
            InvalidQuantity: contract_count is not a positive integer
            MarginLimitExceeded: netted aggregate margin would exceed the limit
            InsufficientBuyingPower: cash cannot fund the extra margin and fee
        """
        if isinstance(contract_count, bool) or not isinstance(contract_count, int) or contract_count <= 0:
            raise InvalidQuantity(f"Contract count must be a positive integer, got {contract_count}")
        spec = self.specs[exchange]
        price = month_data.futures_price(exchange, tenor)
        fee = spec.fee_per_contract * contract_count
        open_turn = self.clock.turn_of_period(period)

        candidate = FuturesPosition(
            id=f"{FUTURES_ID_PREFIX}-{self.next_id:04d}",
            exchange=exchange,
            tenor=tenor,
            direction=direction,
            contract_count=contract_count,
            tonnage=spec.contract_size * contract_count,
            entry_price=price,
            current_price=price,
            open_period=period,
            open_turn=open_turn,
            expiry_turn=calculate_expiry_turn(self.clock, open_turn, tenor),
        )
        new_margin = margin_with_netting([*self.positions.values(), candidate], self.specs)
        if new_margin > self.ledger.margin_limit:
            raise MarginLimitExceeded(
                f"Margin would be ${new_margin:,.0f} against a ${self.ledger.margin_limit:,.0f} limit "
                f"(currently ${self.ledger.margin_posted:,.0f})"
            )
        required_cash = new_margin - self.ledger.margin_posted + fee
        if required_cash > self.ledger.cash:
            raise InsufficientBuyingPower(
                f"Need ${required_cash:,.2f} cash for margin and fees, have ${self.ledger.cash:,.2f}"
            )

        self._allocate_id()
        self.positions[candidate.id] = candidate
        self.ledger.book_futures_pl(-fee)
        self.ledger.set_margin_posted(new_margin)
        return candidate

    def close_position(self, position_id: str, reason: str = "CLOSED") -> FuturesClose:
        """Close an open position at its last marked price."""
        return self.force_liquidate(self.get(position_id), reason)

    def force_liquidate(self, position: FuturesPosition, reason: str) -> FuturesClose:
        """
        Remove a position, release its margin and settle its P&L in cash.

        Realized P&L is the unrealized P&L at the last mark; the closing fee
        is charged on top.
        """
        if position.id not in self.positions:
            raise PositionNotFound(f"Futures position {position.id} not found")
        spec = self.specs[position.exchange]
        fee = spec.fee_per_contract * position.contract_count

        del self.positions[position.id]
        position.status = FuturesStatus.CLOSED
        self.ledger.set_margin_posted(self.aggregate_margin())
        self.ledger.book_futures_pl(position.unrealized_pl - fee)
        return FuturesClose(
            position_id=position.id,
            realized_pl=position.unrealized_pl,
            fee=fee,
            reason=reason,
        )

    # ========================================================================
    # PERIODIC
    # ========================================================================

    def mark_to_market(self, month_data: MonthData, current_turn: int) -> ExpiryReport:
        """Refresh prices from the tenor curve, recompute margin, then expire."""
        for position in self.positions.values():
            position.current_price = month_data.futures_price(position.exchange, position.tenor)
            position.unrealized_pl = calculate_unrealized_pl(
                position, position.current_price, self.specs[position.exchange]
            )
        self.ledger.set_margin_posted(self.aggregate_margin())
        return self.check_expiry(current_turn)

    def check_expiry(self, current_turn: int) -> ExpiryReport:
        due = [p for p in self.positions.values() if current_turn >= p.expiry_turn]
        return ExpiryReport(closes=tuple(self.force_liquidate(p, "EXPIRED") for p in due))

    def __repr__(self):
        return f"FuturesEngine({len(self.positions)} open, margin={self.aggregate_margin():,.0f})"
