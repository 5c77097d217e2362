"""
ledger.py - Cash, credit, margin and P&L accounting

The Ledger is the single place money moves. Components ask it to draw funds,
post margin, charge interest or settle a sale; it never decides business
rules on its own beyond "is there enough money".

Accounting identity (holds after every operation):

    cash + margin_posted - credit_used + inventory paid for
        == starting_capital + cumulative_total_pl - cumulative_interest

"Inventory paid for" is the cash and credit drawn for physical lots still
on the book (PositionBook.inventory_at_cost()); it is zero once every lot
has settled.

Monthly purchase and sale counters live here too, since they reset on the
same month boundary the interest schedule follows.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Tuple

from .core import InsufficientBuyingPower, Number, ZERO, to_decimal


# Annual rate on the drawn credit line (4.32%, i.e. 0.36% per month).
DEFAULT_CREDIT_ANNUAL_RATE = Decimal("0.0432")

MONTHS_PER_YEAR = 12


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Read-only copy of the ledger's balances at one moment."""
    cash: Decimal
    credit_used: Decimal
    credit_limit: Decimal
    credit_available: Decimal
    buying_power: Decimal
    interest_next_period: Decimal
    margin_posted: Decimal
    margin_limit: Decimal
    cumulative_physical_pl: Decimal
    cumulative_futures_pl: Decimal
    cumulative_total_pl: Decimal
    cumulative_interest: Decimal
    net_worth: Decimal


class Ledger:
    """
    Mutable balances for one simulation.

    Example:
        ledger = Ledger(starting_capital=200_000, credit_limit=200_000, margin_limit=100_000)
        ledger.draw_funds(250_000)     # (200000, 50000): cash first, then credit
        ledger.compute_interest_next_period()
    """

    def __init__(
        self,
        starting_capital: Number,
        credit_limit: Number,
        margin_limit: Number,
        credit_annual_rate: Number = DEFAULT_CREDIT_ANNUAL_RATE,
        periods_per_month: int = 2,
    ):
        self.starting_capital = to_decimal(starting_capital)
        self.credit_limit = to_decimal(credit_limit)
        self.margin_limit = to_decimal(margin_limit)
        self.credit_annual_rate = to_decimal(credit_annual_rate)
        self.periods_per_month = periods_per_month

        self.cash: Decimal = self.starting_capital
        self.credit_used: Decimal = ZERO
        self.interest_next_period: Decimal = ZERO
        self.margin_posted: Decimal = ZERO
        self.cumulative_physical_pl: Decimal = ZERO
        self.cumulative_futures_pl: Decimal = ZERO
        self.cumulative_interest: Decimal = ZERO

        self.monthly_purchases: Dict[str, Decimal] = {}
        self.monthly_sales: Dict[str, Decimal] = {}

    # ========================================================================
    # DERIVED BALANCES
    # ========================================================================

    @property
    def credit_available(self) -> Decimal:
        return self.credit_limit - self.credit_used

    @property
    def buying_power(self) -> Decimal:
        """Cash plus undrawn credit. Negative cash reduces it."""
        return self.cash + self.credit_available

    @property
    def cumulative_total_pl(self) -> Decimal:
        return self.cumulative_physical_pl + self.cumulative_futures_pl

    @property
    def net_worth(self) -> Decimal:
        return self.cash + self.margin_posted - self.credit_used

    @property
    def margin_available(self) -> Decimal:
        return self.margin_limit - self.margin_posted

    # ========================================================================
    # PHYSICAL FUNDING
    # ========================================================================

    def draw_funds(self, amount: Number) -> Tuple[Decimal, Decimal]:
        """
        Pay `amount` from cash first, then from the credit line.

        Returns:
            (from_cash, from_credit)

        Raises:
            InsufficientBuyingPower: amount exceeds cash plus available credit.
                                     Nothing is drawn.
        """
        amount = to_decimal(amount)
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        if amount > self.buying_power:
            raise InsufficientBuyingPower(
                f"Need ${amount:,.2f}, available ${self.buying_power:,.2f}"
            )
        from_cash = min(max(self.cash, ZERO), amount)
        from_credit = amount - from_cash
        self.cash -= from_cash
        self.credit_used += from_credit
        return from_cash, from_credit

    def settle_physical(
        self,
        revenue: Number,
        credit_draw: Number,
        cost_adjustment: Number,
        profit: Number,
    ) -> Tuple[Decimal, Decimal]:
        """
        Book the proceeds of a settled sale.

        The credit drawn to buy the lot is repaid first (never more than is
        outstanding); the rest goes to cash, less any cost adjustment from
        final pricing (positive when the finalized cost exceeded the
        provisional cost paid at purchase).

        Returns:
            (repaid_to_credit, credited_to_cash)
        """
        revenue = to_decimal(revenue)
        repaid = min(to_decimal(credit_draw), self.credit_used)
        repaid = max(repaid, ZERO)
        to_cash = revenue - repaid - to_decimal(cost_adjustment)
        self.credit_used -= repaid
        self.cash += to_cash
        self.cumulative_physical_pl += to_decimal(profit)
        return repaid, to_cash

    # ========================================================================
    # FUTURES FUNDING
    # ========================================================================

    def set_margin_posted(self, new_margin: Number) -> Decimal:
        """
        Move posted margin to `new_margin`, funding the change from cash.

        Returns the delta (positive when more margin was posted).
        """
        new_margin = to_decimal(new_margin)
        delta = new_margin - self.margin_posted
        self.cash -= delta
        self.margin_posted = new_margin
        return delta

    def book_futures_pl(self, amount: Number) -> None:
        """Realized futures P&L or fees (negative) settled in cash."""
        amount = to_decimal(amount)
        self.cash += amount
        self.cumulative_futures_pl += amount

    # ========================================================================
    # INTEREST
    # ========================================================================

    @property
    def period_rate(self) -> Decimal:
        return self.credit_annual_rate / MONTHS_PER_YEAR / self.periods_per_month

    def compute_interest_next_period(self) -> Decimal:
        """Interest that will be charged at the next advance, on credit used now."""
        self.interest_next_period = self.credit_used * self.period_rate
        return self.interest_next_period

    def charge_interest(self) -> Decimal:
        """Deduct the interest computed at the end of the previous period."""
        charged = self.interest_next_period
        self.cash -= charged
        self.cumulative_interest += charged
        self.interest_next_period = ZERO
        return charged

    # ========================================================================
    # MONTHLY COUNTERS
    # ========================================================================

    def purchased_this_month(self, supplier: str) -> Decimal:
        return self.monthly_purchases.get(supplier, ZERO)

    def sold_this_month(self, region: str) -> Decimal:
        return self.monthly_sales.get(region, ZERO)

    def record_purchase(self, supplier: str, tonnage: Number) -> None:
        self.monthly_purchases[supplier] = self.purchased_this_month(supplier) + to_decimal(tonnage)

    def record_sale(self, region: str, tonnage: Number) -> None:
        self.monthly_sales[region] = self.sold_this_month(region) + to_decimal(tonnage)

    def reset_monthly_limits(self) -> None:
        self.monthly_purchases.clear()
        self.monthly_sales.clear()

    # ========================================================================
    # SNAPSHOT
    # ========================================================================

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            cash=self.cash,
            credit_used=self.credit_used,
            credit_limit=self.credit_limit,
            credit_available=self.credit_available,
            buying_power=self.buying_power,
            interest_next_period=self.interest_next_period,
            margin_posted=self.margin_posted,
            margin_limit=self.margin_limit,
            cumulative_physical_pl=self.cumulative_physical_pl,
            cumulative_futures_pl=self.cumulative_futures_pl,
            cumulative_total_pl=self.cumulative_total_pl,
            cumulative_interest=self.cumulative_interest,
            net_worth=self.net_worth,
        )

    def __repr__(self):
        return (f"Ledger(cash={self.cash:,.2f}, credit_used={self.credit_used:,.2f}, "
                f"margin={self.margin_posted:,.2f})")
