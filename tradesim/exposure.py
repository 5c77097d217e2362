"""
exposure.py - Unhedged price exposure

Unsold physical metal loses value when copper falls; short futures gain.
Per exchange, the net tonnage left open to price moves is

    net = unsold physical tonnage + long futures tonnage - short futures tonnage

and its value at spot, summed over exchanges, is the exposure. Expressed as a
percentage of starting capital it maps to a risk level:

    0          NONE
    < 30 %     LOW
    30 - 50 %  HIGH
    >= 50 %    EXTREME
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Tuple

from .core import Exchange, Number, ZERO, to_decimal
from .market_data import MonthData
from .positions.physical import PositionBook
from .positions.futures import FuturesEngine


HIGH_RISK_PCT = Decimal("30")
EXTREME_RISK_PCT = Decimal("50")


class RiskLevel(Enum):
    NONE = "NONE"
    LOW = "LOW"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


@dataclass(frozen=True, slots=True)
class ExposureLine:
    exchange: Exchange
    physical_tonnage: Decimal
    futures_tonnage: Decimal
    spot: Decimal

    @property
    def net_tonnage(self) -> Decimal:
        return self.physical_tonnage + self.futures_tonnage

    @property
    def value(self) -> Decimal:
        return abs(self.net_tonnage) * self.spot


@dataclass(frozen=True, slots=True)
class ExposureReport:
    lines: Tuple[ExposureLine, ...]
    total_exposure: Decimal
    exposure_pct: Decimal
    risk_level: RiskLevel

    @property
    def has_high_risk(self) -> bool:
        return self.risk_level in (RiskLevel.HIGH, RiskLevel.EXTREME)

    def loss_on_price_drop(self, drop_pct: Number = 10) -> Decimal:
        """Approximate loss if prices moved against the open tonnage by `drop_pct` percent."""
        return self.total_exposure * to_decimal(drop_pct) / 100


def classify_risk(exposure_pct: Decimal) -> RiskLevel:
    if exposure_pct <= 0:
        return RiskLevel.NONE
    if exposure_pct >= EXTREME_RISK_PCT:
        return RiskLevel.EXTREME
    if exposure_pct >= HIGH_RISK_PCT:
        return RiskLevel.HIGH
    return RiskLevel.LOW


def calculate_exposure(
    book: PositionBook,
    futures: FuturesEngine,
    month_data: MonthData,
    starting_capital: Number,
) -> ExposureReport:
    capital = to_decimal(starting_capital)
    lines = tuple(
        ExposureLine(
            exchange=exchange,
            physical_tonnage=book.unsold_tonnage(exchange),
            futures_tonnage=futures.net_tonnage(exchange),
            spot=month_data.spot(exchange),
        )
        for exchange in Exchange
    )
    total = sum((line.value for line in lines), ZERO)
    pct = total / capital * 100 if capital > 0 else ZERO
    return ExposureReport(lines=lines, total_exposure=total, exposure_pct=pct, risk_level=classify_risk(pct))
