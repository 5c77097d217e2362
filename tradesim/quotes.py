"""
quotes.py - Trade pricing from the current month's data

Pure functions; nothing here touches simulation state.

    purchase cost per tonne = exchange spot + supplier premium + freight(basis)
    sale price per tonne    = reference exchange spot + regional premium
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import Exchange, ShippingBasis, InvalidQuantity, Number, to_decimal
from .market_data import MonthData


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    supplier: str
    destination: str
    destination_port: str
    shipping_basis: ShippingBasis
    exchange: Exchange
    tonnage: Decimal
    spot: Decimal
    supplier_premium: Decimal
    freight: Decimal
    travel_days: Decimal

    @property
    def cost_per_tonne(self) -> Decimal:
        return self.spot + self.supplier_premium + self.freight

    @property
    def total_cost(self) -> Decimal:
        return self.cost_per_tonne * self.tonnage


@dataclass(frozen=True, slots=True)
class SaleQuote:
    region: str
    exchange: Exchange
    port_of_discharge: str
    tonnage: Decimal
    spot: Decimal
    regional_premium: Decimal

    @property
    def sale_price(self) -> Decimal:
        return self.spot + self.regional_premium

    @property
    def total_revenue(self) -> Decimal:
        return self.sale_price * self.tonnage


def quote_purchase(
    month_data: MonthData,
    supplier: str,
    destination: str,
    shipping_basis: ShippingBasis,
    exchange: Exchange,
    tonnage: Number,
) -> PurchaseQuote:
    """
    Price a purchase at this month's terms.

    Raises UnknownEntity if the supplier or route is not offered this month.
    """
    tonnage = to_decimal(tonnage)
    if tonnage <= 0:
        raise InvalidQuantity(f"Tonnage must be positive, got {tonnage}")
    terms = month_data.supplier(supplier)
    route = month_data.route(terms.origin, destination)
    return PurchaseQuote(
        supplier=supplier,
        destination=destination,
        destination_port=route.port,
        shipping_basis=shipping_basis,
        exchange=exchange,
        tonnage=tonnage,
        spot=month_data.spot(exchange),
        supplier_premium=terms.premium,
        freight=route.rate(shipping_basis),
        travel_days=route.travel_days,
    )


def quote_sale(month_data: MonthData, region: str, tonnage: Number) -> SaleQuote:
    """Price a sale to `region` off its reference exchange."""
    tonnage = to_decimal(tonnage)
    if tonnage <= 0:
        raise InvalidQuantity(f"Tonnage must be positive, got {tonnage}")
    buyer = month_data.buyer(region)
    return SaleQuote(
        region=region,
        exchange=buyer.reference_exchange,
        port_of_discharge=buyer.port_of_discharge,
        tonnage=tonnage,
        spot=month_data.spot(buyer.reference_exchange),
        regional_premium=buyer.premium,
    )
