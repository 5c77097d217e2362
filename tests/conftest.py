"""
conftest.py - Shared pytest fixtures for simulation tests

Provides common fixtures used across unit, functional and conformance tests:
- Scenarios and market data providers
- Stand-alone components (clock, ledger, position book, futures engine)
- Ready-to-play simulations
- Accounting identity check
"""

import pytest
from decimal import Decimal

from tradesim import (
    Clock, Ledger, Period, Scenario, Simulation,
    PositionBook, FuturesEngine, EventBus,
)

from tests.fake_market import make_provider


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def accounting_gap(sim: Simulation) -> Decimal:
    """
    Difference between both sides of the accounting identity:

        cash + margin - credit + inventory paid for == capital + total P&L - interest

    Zero when every cash movement has been booked.
    """
    ledger = sim.ledger
    left = ledger.cash + ledger.margin_posted - ledger.credit_used + sim.book.inventory_at_cost()
    right = ledger.starting_capital + ledger.cumulative_total_pl - ledger.cumulative_interest
    return left - right


def advance_to(sim: Simulation, month: int, sub_period: int) -> None:
    """Advance until the simulation reaches the given period."""
    target = Period(month, sub_period)
    while sim.current_period < target:
        result = sim.advance_period()
        assert result.ok, result.message


# =============================================================================
# SCENARIO FIXTURES
# =============================================================================

@pytest.fixture
def scenario():
    """Three-month scenario with default terms."""
    return Scenario("test", "Test Scenario", duration_months=3)


@pytest.fixture
def provider():
    return make_provider(3)


@pytest.fixture
def month_data(provider):
    return provider.get_month_data(1)


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return Clock(total_months=6)


@pytest.fixture
def ledger():
    return Ledger(starting_capital=200000, credit_limit=200000, margin_limit=100000)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def book(ledger, bus):
    return PositionBook(Clock(total_months=3), ledger, bus)


@pytest.fixture
def futures_engine(ledger):
    return FuturesEngine(Clock(total_months=3), ledger)


# =============================================================================
# SIMULATION FIXTURES
# =============================================================================

@pytest.fixture
def sim(scenario, provider):
    """Fresh quiet simulation at month 1 Early."""
    return Simulation(scenario, provider, verbose=False)


@pytest.fixture
def short_sim():
    """One-month simulation: two turns, then the game ends."""
    return Simulation(Scenario("short", "Short", duration_months=1), make_provider(1), verbose=False)
