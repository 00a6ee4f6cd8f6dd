"""Test utilities package."""

from .basecandle_data_utils import (
    create_backtest_data,
    create_bars,
    create_base_candle_data,
    create_flat_data,
    create_ohlc_data,
    create_rising_data,
    create_timestamp_series,
    to_bar_series,
)
from .config_helpers import (
    create_aggregation_config,
    create_engine_config,
    create_indicators_config,
)

__all__ = [
    # Config helpers
    "create_aggregation_config",
    "create_engine_config",
    "create_indicators_config",
    # Bar data
    "create_timestamp_series",
    "create_bars",
    "create_ohlc_data",
    "create_rising_data",
    "create_flat_data",
    "create_base_candle_data",
    "create_backtest_data",
    "to_bar_series",
]
