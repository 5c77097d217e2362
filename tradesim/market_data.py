"""
market_data.py - Per-month market data for the simulation

Provides read-only market data, queried by month number:

Classes:
- ExchangeCurve: spot and M+1/M+3/M+12 futures prices for one exchange
- Supplier: a source of physical metal with a monthly capacity and premium
- BuyerRegion: a client opportunity with monthly demand, port and premium
- Route: freight terms and travel time between an origin and a destination
- MonthData: everything above for one month, plus M+1 settlement averages
- MarketDataProvider: Protocol defining the lookup interface
- ScenarioMarketData: in-memory provider backed by a dict of MonthData

Functions:
- validate_month_document: collect every problem in a raw month document
- parse_month_document: build a MonthData from a raw month document

The core consumes month data and never mutates it.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Protocol, Tuple, runtime_checkable

from .core import (
    Exchange, Tenor, ShippingBasis,
    DataNotFound, InvalidMarketData, UnknownEntity,
    to_decimal,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Supplier book keys. Peru supplies a fixed LTA tranche plus optional spot
# tonnage out of Callao; Chile supplies spot tonnage out of Antofagasta.
CALLAO_LTA = "CALLAO_LTA"
CALLAO_SPOT = "CALLAO_SPOT"
ANTOFAGASTA_SPOT = "ANTOFAGASTA_SPOT"
SUPPLIER_KEYS = (CALLAO_LTA, CALLAO_SPOT, ANTOFAGASTA_SPOT)

REGIONS = ("AMERICAS", "ASIA", "EUROPE")

_CURVE_FIELDS = ("SPOT_AVG", "FUTURES_1M", "FUTURES_3M", "FUTURES_12M")
_ROUTE_FIELDS = ("TRAVEL_TIME_DAYS", "CIF_RATE_USD_PER_TONNE", "FOB_RATE_USD_PER_TONNE")
_REQUIRED_SECTIONS = ("PRICING", "MARKET_DEPTH", "LOGISTICS", "CLIENTS")


# ============================================================================
# MONTH DATA TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class ExchangeCurve:
    """Spot and futures prices for one exchange in one month (USD per tonne)."""
    spot: Decimal
    m1: Decimal
    m3: Decimal
    m12: Decimal

    def __post_init__(self):
        for name in ('spot', 'm1', 'm3', 'm12'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    def price_for(self, tenor: Tenor) -> Decimal:
        return {Tenor.M1: self.m1, Tenor.M3: self.m3, Tenor.M12: self.m12}[tenor]


@dataclass(frozen=True, slots=True)
class Supplier:
    key: str
    origin: str
    capacity_mt: Decimal
    premium: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'capacity_mt', to_decimal(self.capacity_mt))
        object.__setattr__(self, 'premium', to_decimal(self.premium))


@dataclass(frozen=True, slots=True)
class BuyerRegion:
    """
    A client opportunity for one month.

    capacity_mt is the region's monthly demand; port_of_discharge is the
    "Port, Country" string a lot's destination must match to be sold here.
    """
    region: str
    capacity_mt: Decimal
    port_of_discharge: str
    reference_exchange: Exchange
    premium: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'capacity_mt', to_decimal(self.capacity_mt))
        object.__setattr__(self, 'premium', to_decimal(self.premium))
        if not isinstance(self.reference_exchange, Exchange):
            object.__setattr__(self, 'reference_exchange', Exchange(self.reference_exchange))


@dataclass(frozen=True, slots=True)
class Route:
    origin: str
    destination: str
    port_name: str
    country: str
    travel_days: Decimal
    cif_rate: Decimal
    fob_rate: Decimal
    distance_nm: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ('travel_days', 'cif_rate', 'fob_rate', 'distance_nm'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    @property
    def port(self) -> str:
        """Destination port as buyers name it, e.g. 'Shanghai, China'."""
        return f"{self.port_name}, {self.country}"

    def rate(self, basis: ShippingBasis) -> Decimal:
        return self.fob_rate if basis is ShippingBasis.FOB else self.cif_rate


@dataclass(frozen=True)
class MonthData:
    """
    Immutable market snapshot for one month.

    settlement_averages holds the M+1 average per exchange published with this
    month: the price a lot whose quotational-pricing month is this month is
    finalized at.
    """
    month: int
    pricing: Mapping[Exchange, ExchangeCurve]
    settlement_averages: Mapping[Exchange, Decimal]
    suppliers: Mapping[str, Supplier]
    buyers: Mapping[str, BuyerRegion]
    routes: Mapping[Tuple[str, str], Route]
    label: str = ""

    def __post_init__(self):
        object.__setattr__(
            self, 'settlement_averages',
            {ex: to_decimal(v) for ex, v in self.settlement_averages.items()},
        )

    def curve(self, exchange: Exchange) -> ExchangeCurve:
        try:
            return self.pricing[exchange]
        except KeyError:
            raise DataNotFound(f"Month {self.month}: no pricing for {exchange.value}")

    def spot(self, exchange: Exchange) -> Decimal:
        return self.curve(exchange).spot

    def futures_price(self, exchange: Exchange, tenor: Tenor) -> Decimal:
        return self.curve(exchange).price_for(tenor)

    def settlement_average(self, exchange: Exchange) -> Decimal:
        try:
            return self.settlement_averages[exchange]
        except KeyError:
            raise DataNotFound(f"Month {self.month}: no M+1 settlement average for {exchange.value}")

    def supplier(self, key: str) -> Supplier:
        try:
            return self.suppliers[key]
        except KeyError:
            raise UnknownEntity(f"Supplier {key} not offered in month {self.month}")

    def buyer(self, region: str) -> BuyerRegion:
        try:
            return self.buyers[region]
        except KeyError:
            raise UnknownEntity(f"Region {region} not offered in month {self.month}")

    def route(self, origin: str, destination: str) -> Route:
        try:
            return self.routes[(origin, destination)]
        except KeyError:
            raise UnknownEntity(f"No route from {origin} to {destination} in month {self.month}")

    def destinations(self, origin: str) -> List[str]:
        return sorted(dest for (orig, dest) in self.routes if orig == origin)


# ============================================================================
# PROVIDERS
# ============================================================================

@runtime_checkable
class MarketDataProvider(Protocol):
    """
    Protocol for market data sources.

    get_month_data() must answer synchronously and raise DataNotFound when the
    requested month is not part of the loaded scenario.
    """

    def get_month_data(self, month: int) -> MonthData:
        ...


class ScenarioMarketData:
    """
    Market data provider backed by already-loaded month data.

    Validated at construction: months must be numbered 1..N with no gaps, and
    each MonthData must carry its own month number.

    Example:
        provider = ScenarioMarketData.from_documents({1: may_doc, 2: june_doc})
        provider.get_month_data(2).spot(Exchange.LME)
    """

    def __init__(self, months: Mapping[int, MonthData]):
        expected = list(range(1, len(months) + 1))
        if sorted(months) != expected:
            raise InvalidMarketData([f"Months must be numbered 1-{len(months)}, got {sorted(months)}"])
        errors = [
            f"Month {key}: data labelled as month {data.month}"
            for key, data in months.items() if data.month != key
        ]
        if errors:
            raise InvalidMarketData(errors)
        self._months: Dict[int, MonthData] = dict(months)

    @classmethod
    def from_documents(cls, documents: Mapping[int, Mapping[str, Any]]) -> 'ScenarioMarketData':
        """Parse raw month documents, reporting problems across all months together."""
        errors: List[str] = []
        for month in sorted(documents):
            errors.extend(validate_month_document(documents[month], month))
        if errors:
            raise InvalidMarketData(errors)
        return cls({month: parse_month_document(doc, month) for month, doc in documents.items()})

    @property
    def month_count(self) -> int:
        return len(self._months)

    def get_month_data(self, month: int) -> MonthData:
        data = self._months.get(month)
        if data is None:
            raise DataNotFound(f"No market data for month {month}")
        return data

    def __repr__(self):
        return f"ScenarioMarketData({len(self._months)} months)"


# ============================================================================
# DOCUMENT VALIDATION AND PARSING
# ============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def validate_month_document(doc: Mapping[str, Any], month: int) -> List[str]:
    """
    Check a raw month document and return every problem found.

    An empty list means parse_month_document() will succeed.
    """
    name = doc.get("MONTH", f"Month {month}") if isinstance(doc, Mapping) else f"Month {month}"
    if not isinstance(doc, Mapping):
        return [f"{name}: document must be a mapping"]

    errors: List[str] = []
    for section in _REQUIRED_SECTIONS:
        if section not in doc:
            errors.append(f"{name}: Missing required field '{section}'")

    pricing = doc.get("PRICING") or {}
    for exchange in Exchange:
        curve = pricing.get(exchange.value)
        if curve is None:
            errors.append(f"{name}: Missing PRICING.{exchange.value}")
            continue
        for fld in _CURVE_FIELDS:
            if not _is_number(curve.get(fld)):
                errors.append(f"{name}: PRICING.{exchange.value}.{fld} missing or not a number")

    m_plus_1 = pricing.get("M_PLUS_1")
    if m_plus_1 is None:
        errors.append(f"{name}: Missing PRICING.M_PLUS_1 (required for physical trades)")
    else:
        for exchange in Exchange:
            if not _is_number(m_plus_1.get(f"{exchange.value}_AVG")):
                errors.append(f"{name}: PRICING.M_PLUS_1.{exchange.value}_AVG missing or not a number")

    depth = doc.get("MARKET_DEPTH") or {}
    supply = depth.get("SUPPLY")
    if supply is None:
        errors.append(f"{name}: Missing MARKET_DEPTH.SUPPLY")
    else:
        peru = supply.get("PERUVIAN")
        if peru is None:
            errors.append(f"{name}: Missing MARKET_DEPTH.SUPPLY.PERUVIAN")
        else:
            for fld in ("LTA_FIXED_MT", "MAX_OPTIONAL_SPOT_MT", "SUPPLIER_PREMIUM_USD"):
                if not _is_number(peru.get(fld)):
                    errors.append(f"{name}: MARKET_DEPTH.SUPPLY.PERUVIAN.{fld} missing or not a number")
        chile = supply.get("CHILEAN")
        if chile is None:
            errors.append(f"{name}: Missing MARKET_DEPTH.SUPPLY.CHILEAN")
        else:
            for fld in ("MAX_AVAILABLE_MT", "SUPPLIER_PREMIUM_USD"):
                if not _is_number(chile.get(fld)):
                    errors.append(f"{name}: MARKET_DEPTH.SUPPLY.CHILEAN.{fld} missing or not a number")
    if depth.get("DEMAND") is None:
        errors.append(f"{name}: Missing MARKET_DEPTH.DEMAND")

    freight = (doc.get("LOGISTICS") or {}).get("FREIGHT_RATES")
    if freight is None:
        errors.append(f"{name}: Missing LOGISTICS.FREIGHT_RATES")
    else:
        for origin in ("CALLAO", "ANTOFAGASTA"):
            routes = freight.get(origin)
            if not routes:
                errors.append(f"{name}: Missing freight rates for {origin}")
                continue
            for dest, route in routes.items():
                for fld in _ROUTE_FIELDS:
                    if not _is_number(route.get(fld)):
                        errors.append(
                            f"{name}: LOGISTICS.FREIGHT_RATES.{origin}.{dest}.{fld} missing or not a number"
                        )

    opportunities = (doc.get("CLIENTS") or {}).get("OPPORTUNITIES")
    if opportunities is None:
        errors.append(f"{name}: Missing CLIENTS.OPPORTUNITIES")
    elif not isinstance(opportunities, list):
        errors.append(f"{name}: CLIENTS.OPPORTUNITIES must be an array")
    else:
        for i, opp in enumerate(opportunities):
            if opp.get("REGION") not in REGIONS:
                errors.append(f"{name}: CLIENTS.OPPORTUNITIES[{i}].REGION must be one of {', '.join(REGIONS)}")
            if opp.get("REFERENCE_EXCHANGE") not in [e.value for e in Exchange]:
                errors.append(f"{name}: CLIENTS.OPPORTUNITIES[{i}].REFERENCE_EXCHANGE must be LME or COMEX")
            for fld in ("MAX_QUANTITY_MT", "REGIONAL_PREMIUM_USD"):
                if not _is_number(opp.get(fld)):
                    errors.append(f"{name}: CLIENTS.OPPORTUNITIES[{i}].{fld} missing or not a number")

    return errors


def parse_month_document(doc: Mapping[str, Any], month: int) -> MonthData:
    """
    Build a MonthData from a raw month document.

    Raises InvalidMarketData listing every problem if the document is invalid.
    """
    errors = validate_month_document(doc, month)
    if errors:
        raise InvalidMarketData(errors)

    pricing = doc["PRICING"]
    curves = {
        exchange: ExchangeCurve(
            spot=pricing[exchange.value]["SPOT_AVG"],
            m1=pricing[exchange.value]["FUTURES_1M"],
            m3=pricing[exchange.value]["FUTURES_3M"],
            m12=pricing[exchange.value]["FUTURES_12M"],
        )
        for exchange in Exchange
    }
    averages = {exchange: pricing["M_PLUS_1"][f"{exchange.value}_AVG"] for exchange in Exchange}

    supply = doc["MARKET_DEPTH"]["SUPPLY"]
    peru, chile = supply["PERUVIAN"], supply["CHILEAN"]
    peru_origin = str(peru.get("ORIGIN_PORT", "Callao")).upper()
    chile_origin = str(chile.get("ORIGIN_PORT", "Antofagasta")).upper()
    suppliers = {
        CALLAO_LTA: Supplier(CALLAO_LTA, peru_origin, peru["LTA_FIXED_MT"], peru["SUPPLIER_PREMIUM_USD"]),
        CALLAO_SPOT: Supplier(CALLAO_SPOT, peru_origin, peru["MAX_OPTIONAL_SPOT_MT"], peru["SUPPLIER_PREMIUM_USD"]),
        ANTOFAGASTA_SPOT: Supplier(
            ANTOFAGASTA_SPOT, chile_origin, chile["MAX_AVAILABLE_MT"], chile["SUPPLIER_PREMIUM_USD"],
        ),
    }

    demand = doc["MARKET_DEPTH"]["DEMAND"]
    buyers: Dict[str, BuyerRegion] = {}
    for opp in doc["CLIENTS"]["OPPORTUNITIES"]:
        region = opp["REGION"]
        # Regional demand caps the opportunity when both are given
        capacity = (demand.get(region) or {}).get("DEMAND_MT", opp["MAX_QUANTITY_MT"])
        buyers[region] = BuyerRegion(
            region=region,
            capacity_mt=capacity,
            port_of_discharge=opp.get("PORT_OF_DISCHARGE", ""),
            reference_exchange=Exchange(opp["REFERENCE_EXCHANGE"]),
            premium=opp["REGIONAL_PREMIUM_USD"],
        )

    routes: Dict[Tuple[str, str], Route] = {}
    for origin, table in doc["LOGISTICS"]["FREIGHT_RATES"].items():
        for dest, r in table.items():
            routes[(origin, dest)] = Route(
                origin=origin,
                destination=dest,
                port_name=r.get("PORT_NAME", dest.title()),
                country=r.get("COUNTRY", ""),
                travel_days=r["TRAVEL_TIME_DAYS"],
                cif_rate=r["CIF_RATE_USD_PER_TONNE"],
                fob_rate=r["FOB_RATE_USD_PER_TONNE"],
                distance_nm=r.get("DISTANCE_NM", 0),
            )

    return MonthData(
        month=month,
        pricing=curves,
        settlement_averages=averages,
        suppliers=suppliers,
        buyers=buyers,
        routes=routes,
        label=str(doc.get("MONTH", "")),
    )
