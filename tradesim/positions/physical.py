"""
physical.py - Physical copper lots: purchase, transit, sale, pricing, settlement

This module provides the physical position lifecycle:
1. PhysicalPosition - one lot of metal and its two independent status axes
2. PositionBook.purchase() - buy from a supplier, fund it, schedule arrival
3. PositionBook.sell() - commit a lot (or part of it) to a buyer region
4. PositionBook.update_status() - IN_TRANSIT -> ARRIVED when the turn comes
5. PositionBook.reprice_pending() - finalize cost once the QP month has elapsed
6. PositionBook.process_settlements() - realize P&L and return funds

Lifecycle of a lot:

    purchase (month m)
        cost is provisional: spot + supplier premium + freight
        arrival turn from travel days, QP month = m + 1
    sell (any time, arrival not required)
        settlement period = month m + 2, Early (a later sale settles on the next advance)
    advance into month m + 2
        cost finalized at the QP month's M+1 average + premium + freight
    advance into the settlement turn
        profit = revenue - finalized cost x tonnage, lot leaves the book

Logistics status is driven by time alone; sale status by the player alone.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..core import (
    Period, Exchange, ShippingBasis, LogisticsStatus, SaleStatus,
    CapacityExceeded, RegionCapacityExceeded, InsufficientInventory,
    DestinationMismatch, PositionNotFound, InvalidQuantity,
    Number, QUANTITY_EPSILON, ZERO, to_decimal,
)
from ..clock import Clock
from ..ledger import Ledger
from ..market_data import MonthData, MarketDataProvider
from ..events import EventBus, PositionCreated, PositionStatusChanged, PositionsRepriced


PHYSICAL_ID_PREFIX = "PHYS"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(slots=True)
class SaleInfo:
    region: str
    tonnage: Decimal
    sale_price: Decimal
    total_revenue: Decimal
    sale_period: Period
    sale_turn: int
    settlement_period: Period
    settlement_turn: int


@dataclass(slots=True)
class PhysicalPosition:
    """
    One lot of physical metal.

    supplier_premium and freight are the trade terms captured at purchase.
    Final pricing reuses them, whatever later months quote.
    """
    id: str
    supplier: str
    origin: str
    destination: str
    destination_port: str
    tonnage: Decimal
    exchange: Exchange
    shipping_basis: ShippingBasis
    purchase_period: Period
    purchase_turn: int
    travel_days: Decimal
    arrival_period: Period
    arrival_turn: int
    qp_month: int
    provisional_cost: Decimal
    supplier_premium: Decimal
    freight: Decimal
    total_cost: Decimal
    paid_from_cash: Decimal
    paid_from_credit: Decimal
    logistics_status: LogisticsStatus = LogisticsStatus.IN_TRANSIT
    sale_status: SaleStatus = SaleStatus.UNSOLD
    finalized: bool = False
    finalized_cost: Optional[Decimal] = None
    sale: Optional[SaleInfo] = None

    @property
    def cost_per_tonne(self) -> Decimal:
        """Finalized cost once known, provisional cost until then."""
        return self.finalized_cost if self.finalized else self.provisional_cost

    @property
    def is_sold(self) -> bool:
        return self.sale_status is SaleStatus.SOLD_PENDING_SETTLEMENT

    @property
    def has_arrived(self) -> bool:
        return self.logistics_status is LogisticsStatus.ARRIVED


@dataclass(frozen=True, slots=True)
class SaleConfirmation:
    """
    Result of a sale. No profit is realized until settlement.

    remainder_id names the unsold part of a split lot, if any.
    """
    position_id: str
    tonnage: Decimal
    total_revenue: Decimal
    settlement_period: Period
    remainder_id: Optional[str] = None
    immediate_profit: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class Settlement:
    position_id: str
    region: str
    tonnage: Decimal
    revenue: Decimal
    cost_per_tonne: Decimal
    finalized: bool
    profit: Decimal
    repaid_to_credit: Decimal
    credited_to_cash: Decimal


@dataclass(frozen=True, slots=True)
class SettlementReport:
    settlements: Tuple[Settlement, ...] = ()

    @property
    def total_profit(self) -> Decimal:
        return sum((s.profit for s in self.settlements), ZERO)

    @property
    def position_ids(self) -> Tuple[str, ...]:
        return tuple(s.position_id for s in self.settlements)


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_finalized_cost(settlement_average: Number, supplier_premium: Number, freight: Number) -> Decimal:
    """Cost per tonne once the QP month's average is known."""
    return to_decimal(settlement_average) + to_decimal(supplier_premium) + to_decimal(freight)


def calculate_settlement(position: PhysicalPosition) -> Tuple[Decimal, Decimal]:
    """
    Profit and cost adjustment for settling a sold lot.

    Returns:
        (profit, cost_adjustment) where cost_adjustment is what final pricing
        added to the cost paid at purchase (negative if it came in cheaper).
    """
    cost = position.cost_per_tonne * position.tonnage
    profit = position.sale.total_revenue - cost
    cost_adjustment = cost - (position.paid_from_cash + position.paid_from_credit)
    return profit, cost_adjustment


# ============================================================================
# POSITION BOOK
# ============================================================================

class PositionBook:
    """
    Owns every active physical lot.

    Methods that change state validate everything first and only then
    mutate, so a raised error leaves the book and the ledger untouched.
    """

    def __init__(self, clock: Clock, ledger: Ledger, bus: Optional[EventBus] = None):
        self.clock = clock
        self.ledger = ledger
        self.bus = bus or EventBus()
        self.positions: Dict[str, PhysicalPosition] = {}
        self.next_id = 1

    def _allocate_id(self) -> str:
        position_id = f"{PHYSICAL_ID_PREFIX}-{self.next_id:04d}"
        self.next_id += 1
        return position_id

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, position_id: str) -> PhysicalPosition:
        try:
            return self.positions[position_id]
        except KeyError:
            raise PositionNotFound(f"Physical position {position_id} not found")

    def active(self) -> List[PhysicalPosition]:
        return list(self.positions.values())

    def unsold(self) -> List[PhysicalPosition]:
        return [p for p in self.positions.values() if not p.is_sold]

    def unsold_tonnage(self, exchange: Optional[Exchange] = None) -> Decimal:
        return sum(
            (p.tonnage for p in self.unsold() if exchange is None or p.exchange is exchange),
            ZERO,
        )

    def inventory_at_cost(self) -> Decimal:
        """Cash plus credit drawn for every lot still on the book."""
        return sum((p.paid_from_cash + p.paid_from_credit for p in self.positions.values()), ZERO)

    def remaining_supplier_capacity(self, month_data: MonthData, supplier: str) -> Decimal:
        capacity = month_data.supplier(supplier).capacity_mt
        return max(capacity - self.ledger.purchased_this_month(supplier), ZERO)

    def remaining_region_demand(self, month_data: MonthData, region: str) -> Decimal:
        capacity = month_data.buyer(region).capacity_mt
        return max(capacity - self.ledger.sold_this_month(region), ZERO)

    # ========================================================================
    # PURCHASE
    # ========================================================================

    def purchase(
        self,
        month_data: MonthData,
        period: Period,
        supplier: str,
        tonnage: Number,
        cost_per_tonne: Number,
        total_cost: Optional[Number],
        exchange: Exchange,
        shipping_basis: ShippingBasis,
        destination: str,
    ) -> PhysicalPosition:
        """
        Buy `tonnage` from `supplier`, shipped to `destination`.

        Raises:
            InvalidQuantity: tonnage or cost is not positive
            CapacityExceeded: supplier's remaining monthly capacity is too small
            UnknownEntity: supplier or route not offered this month
            InsufficientBuyingPower: total cost exceeds cash plus available credit
        """
        tonnage = to_decimal(tonnage)
        cost_per_tonne = to_decimal(cost_per_tonne)
        if tonnage <= 0:
            raise InvalidQuantity(f"Tonnage must be positive, got {tonnage}")
        if cost_per_tonne <= 0:
            raise InvalidQuantity(f"Cost per tonne must be positive, got {cost_per_tonne}")
        total_cost = cost_per_tonne * tonnage if total_cost is None else to_decimal(total_cost)

        terms = month_data.supplier(supplier)
        remaining = self.remaining_supplier_capacity(month_data, supplier)
        if tonnage > remaining + QUANTITY_EPSILON:
            raise CapacityExceeded(
                f"{supplier}: {tonnage} MT requested, {remaining} MT remaining this month"
            )
        route = month_data.route(terms.origin, destination)
        arrival = self.clock.arrival_period(period, route.travel_days)

        from_cash, from_credit = self.ledger.draw_funds(total_cost)
        self.ledger.record_purchase(supplier, tonnage)

        position = PhysicalPosition(
            id=self._allocate_id(),
            supplier=supplier,
            origin=terms.origin,
            destination=destination,
            destination_port=route.port,
            tonnage=tonnage,
            exchange=exchange,
            shipping_basis=shipping_basis,
            purchase_period=period,
            purchase_turn=self.clock.turn_of_period(period),
            travel_days=route.travel_days,
            arrival_period=arrival,
            arrival_turn=self.clock.turn_of_period(arrival),
            qp_month=self.clock.qp_month(period),
            provisional_cost=cost_per_tonne,
            supplier_premium=terms.premium,
            freight=route.rate(shipping_basis),
            total_cost=total_cost,
            paid_from_cash=from_cash,
            paid_from_credit=from_credit,
        )
        self.positions[position.id] = position

        self.bus.publish(PositionCreated(
            position_id=position.id,
            supplier=supplier,
            tonnage=tonnage,
            total_cost=total_cost,
            period=period,
            arrival_period=arrival,
        ))
        return position

    # ========================================================================
    # SALE
    # ========================================================================

    def sell(
        self,
        month_data: MonthData,
        period: Period,
        position_id: str,
        tonnage: Number,
        region: str,
        sale_price: Number,
        total_revenue: Optional[Number] = None,
    ) -> SaleConfirmation:
        """
        Commit `tonnage` of a lot to `region` at `sale_price` per tonne.

        Selling part of a lot splits it: the sold tonnage keeps the id, the
        rest becomes a new unsold lot with the same trade terms and its
        proportional share of the cash and credit used to buy it.

        Raises:
            PositionNotFound: unknown id
            InvalidQuantity: tonnage or price is not positive
            InsufficientInventory: lot already sold, or tonnage exceeds the lot
            UnknownEntity: region not offered this month
            DestinationMismatch: region's port is not the lot's destination
            RegionCapacityExceeded: region's remaining monthly demand is too small
        """
        position = self.get(position_id)
        tonnage = to_decimal(tonnage)
        sale_price = to_decimal(sale_price)
        if tonnage <= 0:
            raise InvalidQuantity(f"Tonnage must be positive, got {tonnage}")
        if sale_price <= 0:
            raise InvalidQuantity(f"Sale price must be positive, got {sale_price}")
        if position.is_sold:
            raise InsufficientInventory(f"{position_id} is already sold")
        if tonnage > position.tonnage + QUANTITY_EPSILON:
            raise InsufficientInventory(
                f"{position_id}: selling {tonnage} MT, only {position.tonnage} MT held"
            )
        total_revenue = sale_price * tonnage if total_revenue is None else to_decimal(total_revenue)

        buyer = month_data.buyer(region)
        if buyer.port_of_discharge != position.destination_port:
            raise DestinationMismatch(
                f"{position_id} ships to {position.destination_port}; "
                f"{region} takes delivery at {buyer.port_of_discharge}"
            )
        remaining = self.remaining_region_demand(month_data, region)
        if tonnage > remaining + QUANTITY_EPSILON:
            raise RegionCapacityExceeded(
                f"{region}: {tonnage} MT offered, {remaining} MT of demand left this month"
            )

        remainder_id = None
        if position.tonnage - tonnage > QUANTITY_EPSILON:
            remainder_id = self._split(position, tonnage).id

        settlement = self.clock.settlement_period(position.purchase_period)
        position.sale = SaleInfo(
            region=region,
            tonnage=tonnage,
            sale_price=sale_price,
            total_revenue=total_revenue,
            sale_period=period,
            sale_turn=self.clock.turn_of_period(period),
            settlement_period=settlement,
            settlement_turn=self.clock.turn_of_period(settlement),
        )
        position.sale_status = SaleStatus.SOLD_PENDING_SETTLEMENT
        self.ledger.record_sale(region, tonnage)

        return SaleConfirmation(
            position_id=position.id,
            tonnage=tonnage,
            total_revenue=total_revenue,
            settlement_period=settlement,
            remainder_id=remainder_id,
        )

    def _split(self, position: PhysicalPosition, sold_tonnage: Decimal) -> PhysicalPosition:
        """Cut the unsold remainder off `position`, leaving it holding `sold_tonnage`."""
        remainder_tonnage = position.tonnage - sold_tonnage
        share = remainder_tonnage / position.tonnage
        remainder_cash = position.paid_from_cash * share
        remainder_credit = position.paid_from_credit * share
        remainder_cost = position.total_cost * share

        remainder = replace(
            position,
            id=self._allocate_id(),
            tonnage=remainder_tonnage,
            total_cost=remainder_cost,
            paid_from_cash=remainder_cash,
            paid_from_credit=remainder_credit,
            sale=None,
        )
        position.tonnage = sold_tonnage
        position.total_cost -= remainder_cost
        position.paid_from_cash -= remainder_cash
        position.paid_from_credit -= remainder_credit
        self.positions[remainder.id] = remainder
        return remainder

    # ========================================================================
    # TIME-DRIVEN TRANSITIONS
    # ========================================================================

    def update_status(self, current_turn: int) -> List[str]:
        """Mark lots whose arrival turn has been reached as ARRIVED."""
        arrived = []
        for position in self.positions.values():
            if position.logistics_status is LogisticsStatus.IN_TRANSIT and current_turn >= position.arrival_turn:
                position.logistics_status = LogisticsStatus.ARRIVED
                arrived.append(position.id)
                self.bus.publish(PositionStatusChanged(
                    position_id=position.id,
                    old_status=LogisticsStatus.IN_TRANSIT,
                    new_status=LogisticsStatus.ARRIVED,
                    turn=current_turn,
                ))
        return arrived

    def reprice_pending(self, current_month: int, provider: MarketDataProvider) -> List[str]:
        """
        Finalize the cost of every lot whose QP month has fully elapsed.

        Runs at most once per lot; finalized lots are skipped.
        """
        repriced = []
        for position in self.positions.values():
            if position.finalized or current_month <= position.qp_month:
                continue
            average = provider.get_month_data(position.qp_month).settlement_average(position.exchange)
            position.finalized_cost = calculate_finalized_cost(
                average, position.supplier_premium, position.freight
            )
            position.total_cost = position.finalized_cost * position.tonnage
            position.finalized = True
            repriced.append(position.id)

        if repriced:
            self.bus.publish(PositionsRepriced(position_ids=tuple(repriced), month=current_month))
        return repriced

    def process_settlements(self, current_turn: int) -> SettlementReport:
        """
        Settle every sold lot whose settlement turn has been reached.

        Lots whose QP month lies beyond the scenario were never finalized and
        settle at their provisional cost.
        """
        due = [
            p for p in self.positions.values()
            if p.is_sold and current_turn >= p.sale.settlement_turn
        ]
        settlements = []
        for position in due:
            profit, cost_adjustment = calculate_settlement(position)
            repaid, to_cash = self.ledger.settle_physical(
                revenue=position.sale.total_revenue,
                credit_draw=position.paid_from_credit,
                cost_adjustment=cost_adjustment,
                profit=profit,
            )
            del self.positions[position.id]
            settlements.append(Settlement(
                position_id=position.id,
                region=position.sale.region,
                tonnage=position.tonnage,
                revenue=position.sale.total_revenue,
                cost_per_tonne=position.cost_per_tonne,
                finalized=position.finalized,
                profit=profit,
                repaid_to_credit=repaid,
                credited_to_cash=to_cash,
            ))
        return SettlementReport(settlements=tuple(settlements))

    def __repr__(self):
        return f"PositionBook({len(self.positions)} lots, {self.unsold_tonnage()} MT unsold)"
