"""
test_futures_engine.py - Unit tests for futures positions and margin netting

Tests:
- open_position: entry price, fee, margin posting, limit and cash checks
- margin_with_netting: offset pairs per (exchange, tenor) group
- mark_to_market: unrealized P&L with contract multipliers
- close_position / check_expiry
"""

import pytest
from decimal import Decimal

from tradesim import (
    Clock, Ledger, Period, SubPeriod, Exchange, Tenor, Direction, FuturesStatus,
    FuturesEngine, FuturesContractSpec, DEFAULT_CONTRACT_SPECS, margin_with_netting,
    MarginLimitExceeded, InsufficientBuyingPower, PositionNotFound, InvalidQuantity,
)
from tradesim.positions import calculate_expiry_turn

from tests.fake_market import make_provider


EARLY_M1 = Period(1, SubPeriod.EARLY)


def open_lme(engine, month_data, direction=Direction.LONG, count=1, tenor=Tenor.M3, period=EARLY_M1):
    return engine.open_position(month_data, period, Exchange.LME, tenor, direction, count)


# =============================================================================
# CONTRACT SPECS
# =============================================================================

class TestContractSpecs:

    def test_defaults(self):
        lme = DEFAULT_CONTRACT_SPECS[Exchange.LME]
        comex = DEFAULT_CONTRACT_SPECS[Exchange.COMEX]
        assert lme.multiplier == Decimal("25")
        assert lme.full_margin == Decimal("10000")
        assert lme.offset_margin == Decimal("1000")
        assert comex.multiplier == Decimal("11.34")
        assert comex.full_margin == Decimal("5000")

    def test_offset_above_full_rejected(self):
        with pytest.raises(ValueError):
            FuturesContractSpec(Exchange.LME, 25, 1000, 2000, 25)

    def test_zero_contract_size_rejected(self):
        with pytest.raises(ValueError):
            FuturesContractSpec(Exchange.LME, 0, 1000, 100, 25)


# =============================================================================
# OPEN
# =============================================================================

class TestOpen:

    def test_open_long(self, futures_engine, ledger, month_data):
        position = open_lme(futures_engine, month_data)
        assert position.id == "FUT-0001"
        assert position.entry_price == Decimal("9850")
        assert position.current_price == Decimal("9850")
        assert position.tonnage == Decimal("25")
        assert position.open_turn == 1
        assert position.expiry_turn == 6
        assert position.status is FuturesStatus.OPEN
        assert ledger.margin_posted == Decimal("10000")
        assert ledger.cash == Decimal("189975")
        assert ledger.cumulative_futures_pl == Decimal("-25")

    def test_tenor_prices(self, futures_engine, month_data):
        m1 = open_lme(futures_engine, month_data, tenor=Tenor.M1)
        m12 = open_lme(futures_engine, month_data, tenor=Tenor.M12)
        assert m1.entry_price == Decimal("9680")
        assert m12.entry_price == Decimal("10200")

    def test_nine_contracts(self, futures_engine, ledger, month_data):
        open_lme(futures_engine, month_data, count=9)
        assert ledger.margin_posted == Decimal("90000")
        assert ledger.cash == Decimal("109775")

    def test_exactly_at_limit_is_allowed(self, futures_engine, ledger, month_data):
        open_lme(futures_engine, month_data, count=10)
        assert ledger.margin_posted == Decimal("100000")

    def test_margin_limit_exceeded(self, futures_engine, ledger, month_data):
        open_lme(futures_engine, month_data, count=9)
        with pytest.raises(MarginLimitExceeded):
            open_lme(futures_engine, month_data, count=2)
        assert ledger.margin_posted == Decimal("90000")
        assert ledger.cash == Decimal("109775")
        assert len(futures_engine.active()) == 1
        assert futures_engine.next_id == 2

    def test_offsetting_position_fits_under_limit(self, futures_engine, ledger, month_data):
        open_lme(futures_engine, month_data, count=9)
        open_lme(futures_engine, month_data, direction=Direction.SHORT, count=9)
        # 9 offset pairs at $1,000
        assert ledger.margin_posted == Decimal("9000")
        assert ledger.cash == Decimal("200000") - Decimal("9000") - Decimal("450")

    def test_cash_must_cover_margin_and_fee(self, month_data):
        ledger = Ledger(starting_capital=5000, credit_limit=200000, margin_limit=100000)
        engine = FuturesEngine(Clock(total_months=3), ledger)
        with pytest.raises(InsufficientBuyingPower):
            open_lme(engine, month_data)
        assert ledger.cash == Decimal("5000")
        assert ledger.margin_posted == 0

    @pytest.mark.parametrize("count", [0, -1, True, 1.5])
    def test_invalid_contract_count(self, futures_engine, ledger, month_data, count):
        with pytest.raises(InvalidQuantity):
            open_lme(futures_engine, month_data, count=count)
        assert ledger.cash == Decimal("200000")


# =============================================================================
# NETTING
# =============================================================================

class TestMarginNetting:

    def test_three_long_three_short(self, futures_engine, month_data):
        for _ in range(3):
            open_lme(futures_engine, month_data)
            open_lme(futures_engine, month_data, direction=Direction.SHORT)
        margin = futures_engine.aggregate_margin()
        assert margin == Decimal("3000")
        assert margin < 6 * DEFAULT_CONTRACT_SPECS[Exchange.LME].full_margin

    def test_uneven_group(self, futures_engine, month_data):
        open_lme(futures_engine, month_data, count=5)
        open_lme(futures_engine, month_data, direction=Direction.SHORT, count=2)
        # 2 pairs x $1,000 + 3 net x $10,000
        assert futures_engine.aggregate_margin() == Decimal("32000")

    def test_different_tenors_do_not_net(self, futures_engine, month_data):
        open_lme(futures_engine, month_data, count=3, tenor=Tenor.M3)
        open_lme(futures_engine, month_data, direction=Direction.SHORT, count=3, tenor=Tenor.M1)
        assert futures_engine.aggregate_margin() == Decimal("60000")

    def test_different_exchanges_do_not_net(self, futures_engine, month_data):
        open_lme(futures_engine, month_data, count=1)
        futures_engine.open_position(month_data, EARLY_M1, Exchange.COMEX, Tenor.M3, Direction.SHORT, 1)
        assert futures_engine.aggregate_margin() == Decimal("15000")

    def test_pure_function_ignores_closed(self, futures_engine, month_data):
        position = open_lme(futures_engine, month_data, count=2)
        position.status = FuturesStatus.CLOSED
        assert margin_with_netting([position]) == 0

    def test_empty(self):
        assert margin_with_netting([]) == 0


# =============================================================================
# MARK TO MARKET
# =============================================================================

class TestMarkToMarket:

    def test_long_and_short_pl(self, futures_engine, month_data):
        long = open_lme(futures_engine, month_data, count=2)
        short = open_lme(futures_engine, month_data, direction=Direction.SHORT, count=1)

        month2 = make_provider(3, lme_spot=[9550, 9750, 9550]).get_month_data(2)
        futures_engine.mark_to_market(month2, 3)

        # M+3 moves 9850 -> 10050
        assert long.current_price == Decimal("10050")
        assert long.unrealized_pl == Decimal("10000")
        assert short.unrealized_pl == Decimal("-5000")
        assert futures_engine.total_unrealized_pl() == Decimal("5000")

    def test_comex_multiplier(self, futures_engine, month_data):
        position = futures_engine.open_position(
            month_data, EARLY_M1, Exchange.COMEX, Tenor.M3, Direction.LONG, 1,
        )
        month2 = make_provider(3, comex_spot=[10455, 10555, 10455]).get_month_data(2)
        futures_engine.mark_to_market(month2, 3)
        assert position.unrealized_pl == Decimal("1134")

    def test_price_moves_do_not_change_margin(self, futures_engine, ledger, month_data):
        open_lme(futures_engine, month_data, count=9)
        month2 = make_provider(3, lme_spot=[9550, 8000, 9550]).get_month_data(2)
        futures_engine.mark_to_market(month2, 3)
        assert ledger.margin_posted == Decimal("90000")


# =============================================================================
# CLOSE AND EXPIRY
# =============================================================================

class TestClose:

    def test_close_releases_margin(self, futures_engine, ledger, month_data):
        position = open_lme(futures_engine, month_data)
        closed = futures_engine.close_position(position.id)
        assert closed.realized_pl == 0
        assert closed.fee == Decimal("25")
        assert closed.net_pl == Decimal("-25")
        assert closed.reason == "CLOSED"
        assert ledger.margin_posted == 0
        assert ledger.cash == Decimal("199950")
        assert ledger.cumulative_futures_pl == Decimal("-50")
        assert futures_engine.active() == []

    def test_close_realizes_marked_pl(self, futures_engine, ledger, month_data):
        position = open_lme(futures_engine, month_data, count=2)
        month2 = make_provider(3, lme_spot=[9550, 9750, 9550]).get_month_data(2)
        futures_engine.mark_to_market(month2, 3)

        closed = futures_engine.close_position(position.id)
        assert closed.realized_pl == Decimal("10000")
        assert ledger.cumulative_futures_pl == Decimal("10000") - Decimal("100")
        assert ledger.cash == Decimal("200000") + Decimal("10000") - Decimal("100")

    def test_close_keeps_other_margin(self, futures_engine, ledger, month_data):
        first = open_lme(futures_engine, month_data, count=3)
        open_lme(futures_engine, month_data, direction=Direction.SHORT, count=3)
        futures_engine.close_position(first.id)
        # Remaining 3 shorts are no longer offset
        assert ledger.margin_posted == Decimal("30000")

    def test_unknown_id(self, futures_engine):
        with pytest.raises(PositionNotFound):
            futures_engine.close_position("FUT-9999")

    def test_close_twice(self, futures_engine, month_data):
        position = open_lme(futures_engine, month_data)
        futures_engine.close_position(position.id)
        with pytest.raises(PositionNotFound):
            futures_engine.close_position(position.id)


class TestExpiry:

    def test_expiry_turn(self):
        clock = Clock(total_months=6)
        assert calculate_expiry_turn(clock, 1, Tenor.M1) == 3
        assert calculate_expiry_turn(clock, 1, Tenor.M3) == 7
        assert calculate_expiry_turn(clock, 1, Tenor.M12) == 12
        assert calculate_expiry_turn(clock, 11, Tenor.M1) == 12

    def test_expires_at_expiry_turn(self, futures_engine, ledger, month_data):
        position = open_lme(futures_engine, month_data, tenor=Tenor.M1)
        assert position.expiry_turn == 3
        assert futures_engine.check_expiry(2).closes == ()

        report = futures_engine.check_expiry(3)
        assert report.position_ids == (position.id,)
        assert report.closes[0].reason == "EXPIRED"
        assert report.total_fees == Decimal("25")
        assert ledger.margin_posted == 0

    def test_mark_to_market_expires(self, futures_engine, month_data):
        position = open_lme(futures_engine, month_data, tenor=Tenor.M1)
        month2 = make_provider(3, lme_spot=[9550, 9750, 9550]).get_month_data(2)
        report = futures_engine.mark_to_market(month2, 3)
        # M+1 moves 9680 -> 9880
        assert report.total_pl == Decimal("5000")
        assert position.status is FuturesStatus.CLOSED


class TestNetTonnage:

    def test_long_minus_short(self, futures_engine, month_data):
        open_lme(futures_engine, month_data, count=2)
        open_lme(futures_engine, month_data, direction=Direction.SHORT)
        assert futures_engine.net_tonnage(Exchange.LME) == Decimal("25")
        assert futures_engine.net_tonnage(Exchange.COMEX) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
