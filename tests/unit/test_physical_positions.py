"""
test_physical_positions.py - Unit tests for the physical position book

Tests:
- purchase: funding, arrival, QP month, capacity, buying power
- sell: sale metadata, destination match, inventory and demand checks
- Partial sale: lot split with proportional funding
- update_status / reprice_pending / process_settlements
"""

import pytest
from decimal import Decimal

from tradesim import (
    Clock, PositionBook, Period, SubPeriod, Exchange, ShippingBasis, LogisticsStatus, SaleStatus,
    PositionCreated, PositionStatusChanged, PositionsRepriced,
    CapacityExceeded, RegionCapacityExceeded, InsufficientBuyingPower,
    InsufficientInventory, DestinationMismatch, PositionNotFound,
    UnknownEntity, InvalidQuantity,
)
from tradesim.positions import calculate_finalized_cost, calculate_settlement

from tests.fake_market import make_provider


EARLY_M1 = Period(1, SubPeriod.EARLY)


def buy(book, month_data, supplier="CALLAO_LTA", tonnage=5, destination="SHANGHAI",
        basis=ShippingBasis.CIF, exchange=Exchange.LME, period=EARLY_M1):
    """Purchase at the quoted cost, as the command surface does."""
    terms = month_data.supplier(supplier)
    route = month_data.route(terms.origin, destination)
    cost = month_data.spot(exchange) + terms.premium + route.rate(basis)
    return book.purchase(
        month_data, period, supplier, tonnage, cost, None, exchange, basis, destination,
    )


def sell(book, month_data, position_id, tonnage, region="ASIA", period=EARLY_M1):
    buyer = month_data.buyer(region)
    price = month_data.spot(buyer.reference_exchange) + buyer.premium
    return book.sell(month_data, period, position_id, tonnage, region, price)


# =============================================================================
# PURCHASE
# =============================================================================

class TestPurchase:

    def test_callao_lot(self, book, ledger, month_data):
        lot = buy(book, month_data)
        assert lot.id == "PHYS-0001"
        assert lot.origin == "CALLAO"
        assert lot.destination_port == "Shanghai, China"
        assert lot.provisional_cost == Decimal("9636")
        assert lot.total_cost == Decimal("48180")
        assert lot.travel_days == Decimal("28.3")
        assert lot.arrival_period == Period(2, SubPeriod.EARLY)
        assert lot.arrival_turn == 3
        assert lot.qp_month == 2
        assert lot.finalized is False
        assert lot.logistics_status is LogisticsStatus.IN_TRANSIT
        assert lot.sale_status is SaleStatus.UNSOLD
        assert ledger.cash == Decimal("151820")
        assert ledger.purchased_this_month("CALLAO_LTA") == Decimal("5")

    def test_fob_uses_fob_rate(self, book, month_data):
        lot = buy(book, month_data, basis=ShippingBasis.FOB)
        assert lot.freight == Decimal("75")
        assert lot.provisional_cost == Decimal("9645")

    def test_ids_are_sequential(self, book, month_data):
        first = buy(book, month_data, tonnage=2)
        second = buy(book, month_data, tonnage=3)
        assert (first.id, second.id) == ("PHYS-0001", "PHYS-0002")

    def test_emits_position_created(self, book, bus, month_data):
        lot = buy(book, month_data)
        created = [e for e in bus.history if isinstance(e, PositionCreated)]
        assert len(created) == 1
        assert created[0].position_id == lot.id
        assert created[0].arrival_period == Period(2, SubPeriod.EARLY)

    def test_spills_into_credit(self, book, ledger, month_data):
        lot = buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=30)
        assert lot.total_cost == Decimal("288690")
        assert lot.paid_from_cash == Decimal("200000")
        assert lot.paid_from_credit == Decimal("88690")
        assert ledger.credit_used == Decimal("88690")
        assert book.inventory_at_cost() == Decimal("288690")


class TestPurchaseRejections:
    """Every rejected purchase leaves the book and the ledger as they were."""

    def assert_untouched(self, book, ledger):
        assert book.positions == {}
        assert book.next_id == 1
        assert ledger.cash == Decimal("200000")
        assert ledger.credit_used == 0
        assert ledger.monthly_purchases == {}

    def test_capacity_exceeded(self, book, ledger, month_data):
        with pytest.raises(CapacityExceeded):
            buy(book, month_data, tonnage=6)
        self.assert_untouched(book, ledger)

    def test_capacity_is_cumulative(self, book, ledger, month_data):
        buy(book, month_data, tonnage=3)
        with pytest.raises(CapacityExceeded):
            buy(book, month_data, tonnage=3)
        assert ledger.purchased_this_month("CALLAO_LTA") == Decimal("3")
        assert book.remaining_supplier_capacity(month_data, "CALLAO_LTA") == Decimal("2")

    def test_insufficient_buying_power(self, book, ledger, month_data):
        # 70 MT x $9,623 = $673,610 against $400,000
        with pytest.raises(InsufficientBuyingPower):
            buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=70)
        self.assert_untouched(book, ledger)

    def test_unknown_supplier(self, book, ledger, month_data):
        with pytest.raises(UnknownEntity):
            book.purchase(month_data, EARLY_M1, "ZAMBIA", 5, 9000, None,
                          Exchange.LME, ShippingBasis.CIF, "SHANGHAI")
        self.assert_untouched(book, ledger)

    def test_unknown_route(self, book, ledger, month_data):
        with pytest.raises(UnknownEntity):
            book.purchase(month_data, EARLY_M1, "CALLAO_LTA", 5, 9636, None,
                          Exchange.LME, ShippingBasis.CIF, "TOKYO")
        self.assert_untouched(book, ledger)

    @pytest.mark.parametrize("tonnage", [0, -5])
    def test_non_positive_tonnage(self, book, ledger, month_data, tonnage):
        with pytest.raises(InvalidQuantity):
            book.purchase(month_data, EARLY_M1, "CALLAO_LTA", tonnage, 9636, None,
                          Exchange.LME, ShippingBasis.CIF, "SHANGHAI")
        self.assert_untouched(book, ledger)


# =============================================================================
# SALE
# =============================================================================

class TestSell:

    def test_full_sale(self, book, ledger, month_data):
        lot = buy(book, month_data)
        confirmation = sell(book, month_data, lot.id, 5)

        assert confirmation.position_id == lot.id
        assert confirmation.total_revenue == Decimal("48450")
        assert confirmation.settlement_period == Period(3, SubPeriod.EARLY)
        assert confirmation.remainder_id is None
        assert confirmation.immediate_profit == 0

        assert lot.is_sold
        assert lot.sale.sale_price == Decimal("9690")
        assert lot.sale.settlement_turn == 5
        assert ledger.cumulative_physical_pl == 0
        assert ledger.sold_this_month("ASIA") == Decimal("5")

    def test_sale_before_arrival(self, book, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5)
        assert lot.logistics_status is LogisticsStatus.IN_TRANSIT
        assert lot.sale_status is SaleStatus.SOLD_PENDING_SETTLEMENT

    def test_late_sale_settles_two_months_later(self, book, month_data):
        lot = buy(book, month_data)
        confirmation = sell(book, month_data, lot.id, 5, period=Period(1, SubPeriod.LATE))
        assert confirmation.settlement_period == Period(3, SubPeriod.EARLY)

    def test_settlement_counts_from_purchase_month(self, book, month_data):
        lot = buy(book, month_data)
        confirmation = sell(book, month_data, lot.id, 5, period=Period(2, SubPeriod.EARLY))
        assert confirmation.settlement_period == Period(3, SubPeriod.EARLY)
        assert lot.sale.sale_turn == 3
        assert lot.sale.settlement_turn == 5

    def test_sale_after_settlement_turn_settles_next_advance(self, book, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5, period=Period(3, SubPeriod.LATE))
        assert lot.sale.settlement_turn == 5

        report = book.process_settlements(6)
        assert report.position_ids == (lot.id,)
        assert book.active() == []

    def test_destination_mismatch(self, book, month_data):
        lot = buy(book, month_data)
        with pytest.raises(DestinationMismatch):
            sell(book, month_data, lot.id, 5, region="EUROPE")
        assert not lot.is_sold

    def test_already_sold(self, book, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5)
        with pytest.raises(InsufficientInventory):
            sell(book, month_data, lot.id, 5)

    def test_more_than_held(self, book, month_data):
        lot = buy(book, month_data)
        with pytest.raises(InsufficientInventory):
            sell(book, month_data, lot.id, 6)

    def test_unknown_position(self, book, month_data):
        with pytest.raises(PositionNotFound):
            sell(book, month_data, "PHYS-9999", 5)

    def test_unknown_region(self, book, month_data):
        lot = buy(book, month_data)
        with pytest.raises(UnknownEntity):
            book.sell(month_data, EARLY_M1, lot.id, 5, "AFRICA", 9000)

    def test_region_capacity_exceeded(self, ledger, bus):
        provider = make_provider(3, demand=[{"AMERICAS": 85, "ASIA": 10, "EUROPE": 65}] * 3)
        data = provider.get_month_data(1)
        book = PositionBook(Clock(total_months=3), ledger, bus)
        lot = buy(book, data, supplier="CALLAO_SPOT", tonnage=15)

        with pytest.raises(RegionCapacityExceeded):
            sell(book, data, lot.id, 12)
        assert not lot.is_sold
        assert lot.tonnage == Decimal("15")
        assert ledger.sold_this_month("ASIA") == 0

    def test_region_capacity_is_a_capacity_error(self):
        assert issubclass(RegionCapacityExceeded, CapacityExceeded)


class TestPartialSale:

    def test_split_keeps_id_on_sold_part(self, book, month_data):
        # 20 MT x $9,623 = $192,460, all from cash
        lot = buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=20)
        confirmation = sell(book, month_data, lot.id, 15)

        assert confirmation.remainder_id == "PHYS-0002"
        sold = book.get(lot.id)
        remainder = book.get(confirmation.remainder_id)

        assert sold.tonnage == Decimal("15")
        assert sold.is_sold
        assert sold.paid_from_cash == Decimal("144345")

        assert remainder.tonnage == Decimal("5")
        assert not remainder.is_sold
        assert remainder.sale is None
        assert remainder.paid_from_cash == Decimal("48115")
        assert remainder.provisional_cost == sold.provisional_cost
        assert remainder.arrival_turn == sold.arrival_turn
        assert remainder.qp_month == sold.qp_month

    def test_split_preserves_funding(self, book, month_data):
        lot = buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=30)
        confirmation = sell(book, month_data, lot.id, 10)
        remainder = book.get(confirmation.remainder_id)

        assert lot.paid_from_credit + remainder.paid_from_credit == Decimal("88690")
        assert lot.paid_from_cash + remainder.paid_from_cash == Decimal("200000")

    def test_remainder_can_be_sold(self, book, month_data):
        lot = buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=20)
        confirmation = sell(book, month_data, lot.id, 15)
        second = sell(book, month_data, confirmation.remainder_id, 5)
        assert second.remainder_id is None
        assert book.unsold() == []


# =============================================================================
# TIME-DRIVEN TRANSITIONS
# =============================================================================

class TestUpdateStatus:

    def test_arrives_at_arrival_turn(self, book, bus, month_data):
        lot = buy(book, month_data)
        assert book.update_status(2) == []
        assert lot.logistics_status is LogisticsStatus.IN_TRANSIT

        assert book.update_status(3) == [lot.id]
        assert lot.has_arrived

        changes = [e for e in bus.history if isinstance(e, PositionStatusChanged)]
        assert len(changes) == 1
        assert changes[0].new_status is LogisticsStatus.ARRIVED
        assert changes[0].turn == 3

    def test_arrival_is_reported_once(self, book, month_data):
        buy(book, month_data)
        book.update_status(3)
        assert book.update_status(4) == []


class TestRepricing:

    def test_not_before_qp_month_elapses(self, book, provider, month_data):
        lot = buy(book, month_data)
        assert book.reprice_pending(1, provider) == []
        assert book.reprice_pending(2, provider) == []
        assert lot.cost_per_tonne == Decimal("9636")

    def test_finalized_at_qp_month_average(self, book, bus, provider, month_data):
        lot = buy(book, month_data)
        assert book.reprice_pending(3, provider) == [lot.id]
        # Month 2 M+1 average 9338 + premium 20 + freight 66
        assert lot.finalized
        assert lot.finalized_cost == Decimal("9424")
        assert lot.cost_per_tonne == Decimal("9424")
        assert lot.total_cost == Decimal("47120")
        assert lot.provisional_cost == Decimal("9636")

        repriced = [e for e in bus.history if isinstance(e, PositionsRepriced)]
        assert repriced == [PositionsRepriced(position_ids=(lot.id,), month=3)]

    def test_repricing_is_idempotent(self, book, bus, provider, month_data):
        lot = buy(book, month_data)
        book.reprice_pending(3, provider)
        assert book.reprice_pending(3, provider) == []
        assert lot.finalized_cost == Decimal("9424")
        assert sum(isinstance(e, PositionsRepriced) for e in bus.history) == 1

    def test_uses_terms_captured_at_purchase(self, book, month_data):
        provider = make_provider(3, lme_avg=[9338, 9400, 9500])
        lot = buy(book, month_data)
        book.reprice_pending(3, provider)
        assert lot.finalized_cost == calculate_finalized_cost(9400, 20, 66)


class TestSettlement:

    def test_not_due_yet(self, book, provider, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5)
        book.reprice_pending(2, provider)
        report = book.process_settlements(4)
        assert report.settlements == ()
        assert lot.id in book.positions

    def test_settles_at_finalized_cost(self, book, ledger, provider, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5)
        book.reprice_pending(3, provider)

        report = book.process_settlements(5)
        assert report.position_ids == (lot.id,)
        settlement = report.settlements[0]
        # 48,450 revenue - 5 x 9,424
        assert settlement.profit == Decimal("1330")
        assert settlement.finalized
        assert report.total_profit == Decimal("1330")

        assert lot.id not in book.positions
        assert ledger.cumulative_physical_pl == Decimal("1330")
        assert ledger.cash == Decimal("201330")
        assert book.inventory_at_cost() == 0

    def test_credit_repaid_first(self, book, ledger, provider, month_data):
        lot = buy(book, month_data, supplier="ANTOFAGASTA_SPOT", tonnage=30)
        sell(book, month_data, lot.id, 30)
        book.reprice_pending(3, provider)

        settlement = book.process_settlements(5).settlements[0]
        # Finalized at 9338 + 5 + 68 = 9411; revenue 30 x 9690 = 290,700
        assert settlement.profit == Decimal("8370")
        assert settlement.repaid_to_credit == Decimal("88690")
        assert ledger.credit_used == 0
        assert ledger.cash == Decimal("208370")

    def test_unsold_lots_never_settle(self, book, provider, month_data):
        lot = buy(book, month_data)
        book.reprice_pending(3, provider)
        assert book.process_settlements(6).settlements == ()
        assert lot.id in book.positions

    def test_unfinalized_settles_at_provisional_cost(self, book, month_data):
        lot = buy(book, month_data)
        sell(book, month_data, lot.id, 5)
        profit, adjustment = calculate_settlement(lot)
        assert profit == Decimal("270")
        assert adjustment == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
