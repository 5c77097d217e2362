"""
Positions module - physical lots and futures contracts.

All position types and their engines are re-exported here for convenience.
"""

# Physical lots
from .physical import (
    PhysicalPosition,
    PositionBook,
    SaleInfo,
    SaleConfirmation,
    Settlement,
    SettlementReport,
    calculate_finalized_cost,
    calculate_settlement,
)

# Futures
from .futures import (
    FuturesContractSpec,
    FuturesPosition,
    FuturesEngine,
    FuturesClose,
    ExpiryReport,
    DEFAULT_CONTRACT_SPECS,
    margin_with_netting,
    calculate_unrealized_pl,
    calculate_expiry_turn,
)

__all__ = [
    'PhysicalPosition',
    'PositionBook',
    'SaleInfo',
    'SaleConfirmation',
    'Settlement',
    'SettlementReport',
    'calculate_finalized_cost',
    'calculate_settlement',
    'FuturesContractSpec',
    'FuturesPosition',
    'FuturesEngine',
    'FuturesClose',
    'ExpiryReport',
    'DEFAULT_CONTRACT_SPECS',
    'margin_with_netting',
    'calculate_unrealized_pl',
    'calculate_expiry_turn',
]
