"""
persistence.py - Versioned save format

This module converts a running simulation to and from a plain dict:
1. to_state_dict() - snapshot the controller's components as a save dict
2. migrate() - bring an older save up to SAVE_VERSION
3. load_state() - parse a save dict into typed components, without touching
   the running simulation
4. dumps()/loads() - JSON text

Decimals are written as strings so a save round-trips exactly. Where the
save lives (file, browser storage, database) is the caller's concern.

Save shape (version 2):

    {
      "version": 2,
      "scenarioId": "...",
      "time": {"month", "subPeriod", "turn"},
      "ledger": {"cash", "creditUsed", "creditLimit", "interestNextPeriod",
                 "marginPosted", "marginLimit", "cumulativePhysicalPL",
                 "cumulativeFuturesPL", "cumulativeTotalPL", "cumulativeInterest"},
      "positions": {"physical": [...], "futures": [...]},
      "monthlyLimits": {"purchases": {...}, "sales": {...}},
      "game": {"ended": bool, "nextIds": {"physical": n, "futures": n}}
    }
"""

from __future__ import annotations
import copy
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .core import (
    Period, Exchange, Tenor, Direction, ShippingBasis,
    LogisticsStatus, SaleStatus, FuturesStatus,
    SaveVersionMismatch, ZERO, to_decimal,
)
from .positions.physical import PhysicalPosition, SaleInfo
from .positions.futures import FuturesPosition


SAVE_VERSION = 2

_LEDGER_FIELDS = {
    'cash': 'cash',
    'creditUsed': 'credit_used',
    'creditLimit': 'credit_limit',
    'interestNextPeriod': 'interest_next_period',
    'marginPosted': 'margin_posted',
    'marginLimit': 'margin_limit',
    'cumulativePhysicalPL': 'cumulative_physical_pl',
    'cumulativeFuturesPL': 'cumulative_futures_pl',
    'cumulativeInterest': 'cumulative_interest',
}


# ============================================================================
# LOADED STATE
# ============================================================================

@dataclass(frozen=True)
class SavedState:
    """A parsed save, ready to be applied to a simulation in one step."""
    scenario_id: Optional[str]
    period: Period
    ledger: Mapping[str, Decimal]
    physical: List[PhysicalPosition]
    futures: List[FuturesPosition]
    monthly_purchases: Mapping[str, Decimal]
    monthly_sales: Mapping[str, Decimal]
    ended: bool
    next_physical_id: int
    next_futures_id: int


# ============================================================================
# ENCODING
# ============================================================================

def _period_dict(period: Period) -> Dict[str, int]:
    return {'month': period.month, 'subPeriod': int(period.sub_period)}


def _period(raw: Mapping[str, Any]) -> Period:
    return Period(int(raw['month']), int(raw['subPeriod']))


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


def physical_to_dict(p: PhysicalPosition) -> Dict[str, Any]:
    sale = None
    if p.sale is not None:
        sale = {
            'region': p.sale.region,
            'tonnage': str(p.sale.tonnage),
            'salePrice': str(p.sale.sale_price),
            'totalRevenue': str(p.sale.total_revenue),
            'salePeriod': _period_dict(p.sale.sale_period),
            'saleTurn': p.sale.sale_turn,
            'settlementPeriod': _period_dict(p.sale.settlement_period),
            'settlementTurn': p.sale.settlement_turn,
        }
    return {
        'id': p.id,
        'supplier': p.supplier,
        'origin': p.origin,
        'destination': p.destination,
        'destinationPort': p.destination_port,
        'tonnage': str(p.tonnage),
        'exchange': p.exchange.value,
        'shippingBasis': p.shipping_basis.value,
        'purchasePeriod': _period_dict(p.purchase_period),
        'purchaseTurn': p.purchase_turn,
        'travelDays': str(p.travel_days),
        'arrivalPeriod': _period_dict(p.arrival_period),
        'arrivalTurn': p.arrival_turn,
        'qpMonth': p.qp_month,
        'provisionalCost': str(p.provisional_cost),
        'supplierPremium': str(p.supplier_premium),
        'freight': str(p.freight),
        'totalCost': str(p.total_cost),
        'paidFromCash': str(p.paid_from_cash),
        'paidFromCredit': str(p.paid_from_credit),
        'logisticsStatus': p.logistics_status.value,
        'saleStatus': p.sale_status.value,
        'finalized': p.finalized,
        'finalizedCost': None if p.finalized_cost is None else str(p.finalized_cost),
        'sale': sale,
    }


def physical_from_dict(raw: Mapping[str, Any]) -> PhysicalPosition:
    sale_raw = raw.get('sale')
    sale = None
    if sale_raw is not None:
        sale = SaleInfo(
            region=sale_raw['region'],
            tonnage=to_decimal(sale_raw['tonnage']),
            sale_price=to_decimal(sale_raw['salePrice']),
            total_revenue=to_decimal(sale_raw['totalRevenue']),
            sale_period=_period(sale_raw['salePeriod']),
            sale_turn=int(sale_raw['saleTurn']),
            settlement_period=_period(sale_raw['settlementPeriod']),
            settlement_turn=int(sale_raw['settlementTurn']),
        )
    return PhysicalPosition(
        id=raw['id'],
        supplier=raw['supplier'],
        origin=raw['origin'],
        destination=raw['destination'],
        destination_port=raw['destinationPort'],
        tonnage=to_decimal(raw['tonnage']),
        exchange=Exchange(raw['exchange']),
        shipping_basis=ShippingBasis(raw['shippingBasis']),
        purchase_period=_period(raw['purchasePeriod']),
        purchase_turn=int(raw['purchaseTurn']),
        travel_days=to_decimal(raw['travelDays']),
        arrival_period=_period(raw['arrivalPeriod']),
        arrival_turn=int(raw['arrivalTurn']),
        qp_month=int(raw['qpMonth']),
        provisional_cost=to_decimal(raw['provisionalCost']),
        supplier_premium=to_decimal(raw['supplierPremium']),
        freight=to_decimal(raw['freight']),
        total_cost=to_decimal(raw['totalCost']),
        paid_from_cash=to_decimal(raw['paidFromCash']),
        paid_from_credit=to_decimal(raw['paidFromCredit']),
        logistics_status=LogisticsStatus(raw['logisticsStatus']),
        sale_status=SaleStatus(raw['saleStatus']),
        finalized=bool(raw['finalized']),
        finalized_cost=_optional_decimal(raw.get('finalizedCost')),
        sale=sale,
    )


def futures_to_dict(f: FuturesPosition) -> Dict[str, Any]:
    return {
        'id': f.id,
        'exchange': f.exchange.value,
        'tenor': f.tenor.value,
        'direction': f.direction.value,
        'contractCount': f.contract_count,
        'tonnage': str(f.tonnage),
        'entryPrice': str(f.entry_price),
        'currentPrice': str(f.current_price),
        'unrealizedPL': str(f.unrealized_pl),
        'openPeriod': _period_dict(f.open_period),
        'openTurn': f.open_turn,
        'expiryTurn': f.expiry_turn,
        'status': f.status.value,
    }


def futures_from_dict(raw: Mapping[str, Any]) -> FuturesPosition:
    return FuturesPosition(
        id=raw['id'],
        exchange=Exchange(raw['exchange']),
        tenor=Tenor(raw['tenor']),
        direction=Direction(raw['direction']),
        contract_count=int(raw['contractCount']),
        tonnage=to_decimal(raw['tonnage']),
        entry_price=to_decimal(raw['entryPrice']),
        current_price=to_decimal(raw['currentPrice']),
        unrealized_pl=to_decimal(raw.get('unrealizedPL', '0')),
        open_period=_period(raw['openPeriod']),
        open_turn=int(raw['openTurn']),
        expiry_turn=int(raw['expiryTurn']),
        status=FuturesStatus(raw.get('status', FuturesStatus.OPEN.value)),
    )


# ============================================================================
# SAVE
# ============================================================================

def to_state_dict(controller) -> Dict[str, Any]:
    """
    Snapshot a PeriodController and the components it drives.

    The result contains only JSON-safe values.
    """
    ledger = controller.ledger
    ledger_dict = {key: str(getattr(ledger, attr)) for key, attr in _LEDGER_FIELDS.items()}
    ledger_dict['cumulativeTotalPL'] = str(ledger.cumulative_total_pl)
    return {
        'version': SAVE_VERSION,
        'scenarioId': controller.scenario.scenario_id,
        'time': {**_period_dict(controller.period), 'turn': controller.turn},
        'ledger': ledger_dict,
        'positions': {
            'physical': [physical_to_dict(p) for p in controller.book.active()],
            'futures': [futures_to_dict(f) for f in controller.futures.active()],
        },
        'monthlyLimits': {
            'purchases': {k: str(v) for k, v in ledger.monthly_purchases.items()},
            'sales': {k: str(v) for k, v in ledger.monthly_sales.items()},
        },
        'game': {
            'ended': controller.ended,
            'nextIds': {'physical': controller.book.next_id, 'futures': controller.futures.next_id},
        },
    }


# ============================================================================
# MIGRATION
# ============================================================================

def _migrate_v1(state: Dict[str, Any]) -> Dict[str, Any]:
    """
    Version 1 named the interest field after months and kept only futures and
    total P&L. Physical P&L is recovered as total minus futures.
    """
    ledger = state.setdefault('ledger', {})
    if 'interestNextMonth' in ledger:
        ledger['interestNextPeriod'] = ledger.pop('interestNextMonth')
    ledger.setdefault('interestNextPeriod', '0')
    futures_pl = to_decimal(ledger.get('cumulativeFuturesPL', '0'))
    total_pl = to_decimal(ledger.get('cumulativeTotalPL', '0'))
    ledger['cumulativeFuturesPL'] = str(futures_pl)
    ledger.setdefault('cumulativePhysicalPL', str(total_pl - futures_pl))
    ledger.setdefault('cumulativeInterest', '0')
    state.setdefault('game', {'ended': False})
    state['version'] = 2
    return state


_MIGRATIONS = {1: _migrate_v1}


def migrate(state: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of `state` upgraded to SAVE_VERSION.

    Raises:
        SaveVersionMismatch: unknown or future version
    """
    upgraded = copy.deepcopy(dict(state))
    version = upgraded.get('version')
    while version != SAVE_VERSION:
        step = _MIGRATIONS.get(version)
        if step is None:
            raise SaveVersionMismatch(
                f"Save version {version!r} cannot be loaded (current version is {SAVE_VERSION})"
            )
        upgraded = step(upgraded)
        version = upgraded['version']
    return upgraded


# ============================================================================
# LOAD
# ============================================================================

def _next_id_after(ids: List[str]) -> int:
    numbers = [int(i.rsplit('-', 1)[-1]) for i in ids if i.rsplit('-', 1)[-1].isdigit()]
    return max(numbers, default=0) + 1


def load_state(state: Mapping[str, Any]) -> SavedState:
    """
    Parse a save dict, migrating it first if needed.

    Nothing is applied here: a save that fails to parse leaves the running
    simulation exactly as it was.

    Raises:
        SaveVersionMismatch: unknown version, or a save missing required data
    """
    state = migrate(state)
    try:
        time = state['time']
        raw_ledger = state['ledger']
        physical = [physical_from_dict(p) for p in state.get('positions', {}).get('physical', [])]
        futures = [futures_from_dict(f) for f in state.get('positions', {}).get('futures', [])]
        limits = state.get('monthlyLimits', {})
        game = state.get('game', {})
        next_ids = game.get('nextIds') or {}
        return SavedState(
            scenario_id=state.get('scenarioId'),
            period=Period(int(time['month']), int(time['subPeriod'])),
            ledger={attr: to_decimal(raw_ledger.get(key, ZERO)) for key, attr in _LEDGER_FIELDS.items()},
            physical=physical,
            futures=futures,
            monthly_purchases={k: to_decimal(v) for k, v in limits.get('purchases', {}).items()},
            monthly_sales={k: to_decimal(v) for k, v in limits.get('sales', {}).items()},
            ended=bool(game.get('ended', False)),
            next_physical_id=int(next_ids.get('physical', _next_id_after([p.id for p in physical]))),
            next_futures_id=int(next_ids.get('futures', _next_id_after([f.id for f in futures]))),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise SaveVersionMismatch(f"Save is malformed: {e!r}") from e


def apply_state(controller, saved: SavedState) -> None:
    """
    Replace the controller's state with a parsed save.

    Raises:
        SaveVersionMismatch: the save belongs to a different scenario
        InvalidPeriod: the saved period lies outside the scenario
    """
    if saved.scenario_id is not None and saved.scenario_id != controller.scenario.scenario_id:
        raise SaveVersionMismatch(
            f"Save belongs to scenario {saved.scenario_id!r}, not {controller.scenario.scenario_id!r}"
        )
    controller.restore(saved.period, saved.ended)

    ledger = controller.ledger
    for attr, value in saved.ledger.items():
        setattr(ledger, attr, value)
    ledger.monthly_purchases = dict(saved.monthly_purchases)
    ledger.monthly_sales = dict(saved.monthly_sales)

    controller.book.positions = {p.id: p for p in saved.physical}
    controller.book.next_id = saved.next_physical_id
    controller.futures.positions = {f.id: f for f in saved.futures}
    controller.futures.next_id = saved.next_futures_id


# ============================================================================
# JSON
# ============================================================================

def dumps(state: Mapping[str, Any]) -> str:
    return json.dumps(state, indent=2, sort_keys=True)


def loads(text: str) -> Dict[str, Any]:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SaveVersionMismatch(f"Save is not valid JSON: {e}") from e
