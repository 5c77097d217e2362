"""
scenario.py - Scenario configuration and end-of-game grading

A Scenario is the immutable term sheet of one game: how long it runs, how
much capital and credit the player starts with, the margin limit, the
interest rate on drawn credit and the thresholds used to grade the result.

Functions:
- load_scenario: validate a scenario manifest and build Scenario + market data
- calculate_roi: net P&L as a percentage of starting capital
- calculate_grade: grade a final result against scoring criteria
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Mapping, Tuple

from .core import InvalidMarketData, Number, to_decimal
from .ledger import DEFAULT_CREDIT_ANNUAL_RATE
from .market_data import ScenarioMarketData


# ============================================================================
# SCORING
# ============================================================================

@dataclass(frozen=True, slots=True)
class ScoringTier:
    """Both thresholds must be met: profit in USD and ROI in percent."""
    min_profit: Decimal
    min_roi_pct: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'min_profit', to_decimal(self.min_profit))
        object.__setattr__(self, 'min_roi_pct', to_decimal(self.min_roi_pct))

    def is_met(self, net_pl: Decimal, roi_pct: Decimal) -> bool:
        return net_pl >= self.min_profit and roi_pct >= self.min_roi_pct


@dataclass(frozen=True, slots=True)
class ScoringCriteria:
    excellent: ScoringTier
    good: ScoringTier
    passing: ScoringTier


DEFAULT_SCORING = ScoringCriteria(
    excellent=ScoringTier(50000, 25),
    good=ScoringTier(25000, "12.5"),
    passing=ScoringTier(10000, 5),
)


@dataclass(frozen=True, slots=True)
class GradeReport:
    grade: str
    emoji: str
    description: str
    net_pl: Decimal
    roi_pct: Decimal


_GRADES = (
    ('excellent', 'EXCELLENT', '🏆', 'Outstanding performance. Profits were maximized.'),
    ('good', 'GOOD', '🥈', 'Strong performance. Market opportunities were captured.'),
    ('passing', 'PASSING', '✅', 'Adequate performance. Profitability was maintained.'),
)


def calculate_roi(net_pl: Number, starting_capital: Number) -> Decimal:
    """ROI in percent. Zero capital yields zero."""
    capital = to_decimal(starting_capital)
    if capital == 0:
        return Decimal("0")
    return to_decimal(net_pl) / capital * 100


def calculate_grade(
    net_pl: Number,
    starting_capital: Number,
    criteria: ScoringCriteria = DEFAULT_SCORING,
) -> GradeReport:
    """
    Grade a final result. Tiers are checked from best to worst; the first
    whose profit and ROI thresholds are both met wins.
    """
    net_pl = to_decimal(net_pl)
    roi = calculate_roi(net_pl, starting_capital)
    for attr, grade, emoji, description in _GRADES:
        if getattr(criteria, attr).is_met(net_pl, roi):
            return GradeReport(grade, emoji, description, net_pl, roi)
    return GradeReport(
        'NEEDS IMPROVEMENT', '📈', 'There is room for improvement. Review the trading strategy.',
        net_pl, roi,
    )


# ============================================================================
# SCENARIO
# ============================================================================

@dataclass(frozen=True, slots=True)
class Scenario:
    """
    Immutable game configuration.

    credit_annual_rate is charged on drawn credit, pro rata per period.
    """
    scenario_id: str
    name: str
    duration_months: int
    periods_per_month: int = 2
    starting_capital: Decimal = Decimal("200000")
    credit_limit: Decimal = Decimal("200000")
    margin_limit: Decimal = Decimal("100000")
    credit_annual_rate: Decimal = DEFAULT_CREDIT_ANNUAL_RATE
    scoring: ScoringCriteria = field(default=DEFAULT_SCORING)

    def __post_init__(self):
        if self.duration_months < 1:
            raise ValueError(f"duration_months must be positive, got {self.duration_months}")
        for name in ('starting_capital', 'credit_limit', 'margin_limit', 'credit_annual_rate'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    @property
    def final_turn(self) -> int:
        return self.duration_months * self.periods_per_month


REQUIRED_MANIFEST_FIELDS = ('id', 'name', 'duration', 'startingCapital', 'locLimit', 'months')


def validate_manifest(manifest: Mapping[str, Any]) -> List[str]:
    errors = [
        f"Scenario missing required field: {name}"
        for name in REQUIRED_MANIFEST_FIELDS if name not in manifest
    ]
    if not errors and len(manifest['months']) != manifest['duration']:
        errors.append(
            f"Scenario duration ({manifest['duration']}) does not match "
            f"months array length ({len(manifest['months'])})"
        )
    return errors


def _parse_scoring(raw: Mapping[str, Any]) -> ScoringCriteria:
    def tier(name: str) -> ScoringTier:
        return ScoringTier(raw[name]['minProfitUSD'], raw[name]['minROI'])
    return ScoringCriteria(excellent=tier('excellent'), good=tier('good'), passing=tier('passing'))


def load_scenario(manifest: Mapping[str, Any]) -> Tuple[Scenario, ScenarioMarketData]:
    """
    Build a Scenario and its market data from a manifest.

    The manifest carries the scenario terms and a `months` list of raw month
    documents, month 1 first.

    Raises:
        InvalidMarketData: listing every problem in the manifest and its months
    """
    errors = validate_manifest(manifest)
    if errors:
        raise InvalidMarketData(errors)

    scoring = manifest.get('scoringCriteria')
    scenario = Scenario(
        scenario_id=str(manifest['id']),
        name=str(manifest['name']),
        duration_months=int(manifest['duration']),
        starting_capital=manifest['startingCapital'],
        credit_limit=manifest['locLimit'],
        margin_limit=manifest.get('marginLimit', Decimal("100000")),
        credit_annual_rate=manifest.get('creditAnnualRate', DEFAULT_CREDIT_ANNUAL_RATE),
        scoring=_parse_scoring(scoring) if scoring else DEFAULT_SCORING,
    )
    documents = {i: doc for i, doc in enumerate(manifest['months'], start=1)}
    return scenario, ScenarioMarketData.from_documents(documents)
