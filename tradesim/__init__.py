"""
tradesim - Turn-based copper trading simulation core

Buy physical copper from Peruvian and Chilean suppliers, ship it to buyers in
the Americas, Asia and Europe, and hedge price risk with LME and COMEX
futures, one half-month period at a time.

Usage:
    from tradesim import Simulation, Scenario, ScenarioMarketData, Exchange, ShippingBasis

    provider = ScenarioMarketData.from_documents({1: may_doc, 2: june_doc, 3: july_doc})
    sim = Simulation(Scenario("demo", "Demo", duration_months=3), provider)

    bought = sim.purchase("CALLAO_LTA", 5, Exchange.LME, ShippingBasis.CIF, "SHANGHAI")
    sim.sell(bought.value.id, 5, "ASIA")
    while not sim.is_ended:
        sim.advance_period()
"""

# Core types
from .core import (
    Period,
    SubPeriod,
    Exchange,
    Tenor,
    Direction,
    ShippingBasis,
    LogisticsStatus,
    SaleStatus,
    FuturesStatus,
    CommandResult,
    QUANTITY_EPSILON,
    to_decimal,
    # Exceptions
    SimulationError,
    InvalidPeriod,
    InvalidQuantity,
    CapacityExceeded,
    RegionCapacityExceeded,
    InsufficientBuyingPower,
    InsufficientInventory,
    DestinationMismatch,
    MarginLimitExceeded,
    PositionNotFound,
    UnknownEntity,
    GameAlreadyEnded,
    AdvanceInProgress,
    DataNotFound,
    InvalidMarketData,
    SaveVersionMismatch,
)

# Components
from .clock import Clock
from .ledger import Ledger, LedgerSnapshot, DEFAULT_CREDIT_ANNUAL_RATE
from .market_data import (
    ExchangeCurve,
    Supplier,
    BuyerRegion,
    Route,
    MonthData,
    MarketDataProvider,
    ScenarioMarketData,
    parse_month_document,
    validate_month_document,
    CALLAO_LTA,
    CALLAO_SPOT,
    ANTOFAGASTA_SPOT,
    REGIONS,
)
from .positions import (
    PhysicalPosition,
    PositionBook,
    SaleInfo,
    SaleConfirmation,
    Settlement,
    SettlementReport,
    FuturesContractSpec,
    FuturesPosition,
    FuturesEngine,
    FuturesClose,
    ExpiryReport,
    DEFAULT_CONTRACT_SPECS,
    margin_with_netting,
)
from .events import (
    EventBus,
    PositionCreated,
    PositionStatusChanged,
    PositionsRepriced,
    PeriodAdvanced,
    GameEnded,
)
from .controller import PeriodController
from .scenario import (
    Scenario,
    ScoringTier,
    ScoringCriteria,
    GradeReport,
    DEFAULT_SCORING,
    calculate_grade,
    calculate_roi,
    load_scenario,
)
from .quotes import PurchaseQuote, SaleQuote, quote_purchase, quote_sale
from .exposure import RiskLevel, ExposureLine, ExposureReport, calculate_exposure
from .persistence import SAVE_VERSION, to_state_dict, load_state, migrate, dumps, loads
from .simulation import Simulation, SimulationSnapshot, TradeRecord

__all__ = [
    # Core types
    'Period', 'SubPeriod', 'Exchange', 'Tenor', 'Direction', 'ShippingBasis',
    'LogisticsStatus', 'SaleStatus', 'FuturesStatus', 'CommandResult',
    'QUANTITY_EPSILON', 'to_decimal',
    # Exceptions
    'SimulationError', 'InvalidPeriod', 'InvalidQuantity', 'CapacityExceeded',
    'RegionCapacityExceeded', 'InsufficientBuyingPower', 'InsufficientInventory',
    'DestinationMismatch', 'MarginLimitExceeded', 'PositionNotFound', 'UnknownEntity',
    'GameAlreadyEnded', 'AdvanceInProgress', 'DataNotFound', 'InvalidMarketData',
    'SaveVersionMismatch',
    # Clock and ledger
    'Clock', 'Ledger', 'LedgerSnapshot', 'DEFAULT_CREDIT_ANNUAL_RATE',
    # Market data
    'ExchangeCurve', 'Supplier', 'BuyerRegion', 'Route', 'MonthData',
    'MarketDataProvider', 'ScenarioMarketData', 'parse_month_document',
    'validate_month_document', 'CALLAO_LTA', 'CALLAO_SPOT', 'ANTOFAGASTA_SPOT', 'REGIONS',
    # Positions
    'PhysicalPosition', 'PositionBook', 'SaleInfo', 'SaleConfirmation',
    'Settlement', 'SettlementReport',
    'FuturesContractSpec', 'FuturesPosition', 'FuturesEngine', 'FuturesClose',
    'ExpiryReport', 'DEFAULT_CONTRACT_SPECS', 'margin_with_netting',
    # Notifications
    'EventBus', 'PositionCreated', 'PositionStatusChanged', 'PositionsRepriced',
    'PeriodAdvanced', 'GameEnded',
    # Controller and scenario
    'PeriodController', 'Scenario', 'ScoringTier', 'ScoringCriteria', 'GradeReport',
    'DEFAULT_SCORING', 'calculate_grade', 'calculate_roi', 'load_scenario',
    # Quotes and exposure
    'PurchaseQuote', 'SaleQuote', 'quote_purchase', 'quote_sale',
    'RiskLevel', 'ExposureLine', 'ExposureReport', 'calculate_exposure',
    # Persistence
    'SAVE_VERSION', 'to_state_dict', 'load_state', 'migrate', 'dumps', 'loads',
    # Simulation
    'Simulation', 'SimulationSnapshot', 'TradeRecord',
]

__version__ = '1.0.0'
