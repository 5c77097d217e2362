"""
events.py - Change notifications

Core concepts:
1. Notifications: immutable records of something that already happened
2. EventBus: synchronous publish/subscribe, owned by one Simulation
3. Handlers: plain functions taking the notification

Notifications are emitted after state has changed. Handlers only read; a
handler that raises propagates out of the operation that published.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Optional, Tuple, Type

from .core import LogisticsStatus, Period


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PositionCreated:
    position_id: str
    supplier: str
    tonnage: Decimal
    total_cost: Decimal
    period: Period
    arrival_period: Period


@dataclass(frozen=True, slots=True)
class PositionStatusChanged:
    position_id: str
    old_status: LogisticsStatus
    new_status: LogisticsStatus
    turn: int


@dataclass(frozen=True, slots=True)
class PositionsRepriced:
    """One notification per advance, listing every lot finalized in it."""
    position_ids: Tuple[str, ...]
    month: int


@dataclass(frozen=True, slots=True)
class PeriodAdvanced:
    """
    Summary of one completed advance.

    settled_position_ids and expired_futures_ids record what left the books;
    physical_pl and futures_pl are the P&L realized during this advance.
    """
    period: Period
    turn: int
    month_changed: bool
    interest_charged: Decimal
    arrived_position_ids: Tuple[str, ...] = ()
    repriced_position_ids: Tuple[str, ...] = ()
    settled_position_ids: Tuple[str, ...] = ()
    expired_futures_ids: Tuple[str, ...] = ()
    physical_pl: Decimal = Decimal("0")
    futures_pl: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class GameEnded:
    final_pl: Decimal
    roi: Decimal
    grade: str
    turn: int


# ============================================================================
# EVENT BUS
# ============================================================================

Handler = Callable[[object], None]

DEFAULT_HISTORY_LIMIT = 500


class EventBus:
    """
    Synchronous notification dispatcher.

    Handlers run in subscription order. Subscribers to a specific type run
    before catch-all subscribers. Each Simulation owns its own bus.

    The most recent `history_limit` notifications are kept in `history`;
    history_limit=0 keeps none.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT):
        if history_limit < 0:
            raise ValueError(f"history_limit must be non-negative, got {history_limit}")
        self._handlers: Dict[Type, List[Handler]] = {}
        self._catch_all: List[Handler] = []
        self.history: Deque[object] = deque(maxlen=history_limit)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        """Register a handler for one notification type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._catch_all.append(handler)

    def unsubscribe(self, event_type: Optional[Type], handler: Handler) -> None:
        """Remove a handler. event_type=None removes a catch-all handler."""
        handlers = self._catch_all if event_type is None else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear_history(self) -> None:
        self.history.clear()

    def publish(self, event: object) -> None:
        self.history.append(event)
        for handler in list(self._handlers.get(type(event), [])):
            handler(event)
        for handler in list(self._catch_all):
            handler(event)

    def __repr__(self):
        count = sum(len(h) for h in self._handlers.values()) + len(self._catch_all)
        return f"EventBus({count} handlers, {len(self.history)} in history)"
