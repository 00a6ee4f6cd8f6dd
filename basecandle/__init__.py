"""
basecandle

Volume-anchored base candle and reference node analysis with confluence-scored
BUY/SELL signals, walk-forward marker generation and a forward backtest.
"""

from .aggregation import Aggregation
from .backtest import BacktestResult, perform_backtest
from .base import BarSeries, Component
from .factory import Factory
from .indicators import Indicators
from .patterns import Divergence, Pattern, TrendStatus
from .schemas import (
    AggregationConfig,
    BacktestConfig,
    EngineConfig,
    FactoryConfig,
    IndicatorSchema,
    IndicatorsConfig,
    StrategyConfig,
    TimeframeConfig,
)
from .signals import (
    Direction,
    EngineResult,
    MarketSnapshot,
    SignalEngine,
    SignalMarker,
    evaluate_bar,
    generate_all_signals,
    major_trend_status,
)
from .strategy import Action, Decision, Factor, Reason, ReasonCode, recommend_strategy

try:
    from importlib.metadata import version

    __version__ = version("basecandle")
except Exception:
    # Fallback if package not found (development mode)
    __version__ = "ERROR: VERSION NOT FOUND"
__all__ = [
    "Factory",
    "Component",
    "Aggregation",
    "Indicators",
    "SignalEngine",
    "BarSeries",
    "AggregationConfig",
    "BacktestConfig",
    "EngineConfig",
    "FactoryConfig",
    "IndicatorsConfig",
    "StrategyConfig",
    "TimeframeConfig",
    "IndicatorSchema",
    "Action",
    "Decision",
    "Factor",
    "Reason",
    "ReasonCode",
    "Pattern",
    "Divergence",
    "TrendStatus",
    "Direction",
    "SignalMarker",
    "EngineResult",
    "MarketSnapshot",
    "BacktestResult",
    "evaluate_bar",
    "generate_all_signals",
    "major_trend_status",
    "perform_backtest",
    "recommend_strategy",
]
