"""
Pydantic schema models for basecandle configuration validation.

This module provides the validation schemas for every component: indicator
periods, strategy risk multipliers, backtest horizons, walk-forward engine
settings and major-timeframe aggregation. Models use Pydantic v2 features for
type safety and detailed error reporting.
"""

from datetime import datetime
from typing import Any, ClassVar, Self

import pytz
from polars import Boolean, Datetime, Float64, String
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TimeframeConfig(BaseModel):
    """Configuration and validation for timeframes with comprehensive metadata."""

    # Timeframe metadata (includes Polars duration mapping)
    TIMEFRAME_METADATA: ClassVar[dict[str, dict[str, Any]]] = {
        "1m": {
            "category": "intraday",
            "seconds": 60,
            "description": "1-minute bars for a single session",
            "weekly": False,
            "polars_format": "1m",
        },
        "3m": {
            "category": "intraday",
            "seconds": 180,
            "description": "3-minute bars over a few sessions",
            "weekly": False,
            "polars_format": "3m",
        },
        "5m": {
            "category": "intraday",
            "seconds": 300,
            "description": "5-minute bars over a few sessions",
            "weekly": False,
            "polars_format": "5m",
        },
        "15m": {
            "category": "intraday",
            "seconds": 900,
            "description": "15-minute bars over a month",
            "weekly": False,
            "polars_format": "15m",
        },
        "30m": {
            "category": "intraday",
            "seconds": 1800,
            "description": "30-minute bars over a month",
            "weekly": False,
            "polars_format": "30m",
        },
        "60m": {
            "category": "hourly",
            "seconds": 3600,
            "description": "Hourly bars over a quarter",
            "weekly": False,
            "polars_format": "1h",
        },
        "90m": {
            "category": "hourly",
            "seconds": 5400,
            "description": "90-minute bars over a quarter",
            "weekly": False,
            "polars_format": "90m",
        },
        "1d": {
            "category": "daily",
            "seconds": 86400,
            "description": "Daily bars for swing analysis",
            "weekly": False,
            "polars_format": "1d",
        },
        "1wk": {
            "category": "weekly",
            "seconds": 604800,
            "description": "Weekly bars for position analysis",
            "weekly": True,
            "polars_format": "1w",
        },
    }

    # Trend-filter timeframe for each primary timeframe
    MAJOR_TIMEFRAMES: ClassVar[dict[str, str]] = {
        "1d": "1wk",
    }

    @classmethod
    def validate_timeframe(cls, timeframe: str) -> bool:
        """Validate that the timeframe is supported."""
        return timeframe in cls.TIMEFRAME_METADATA

    @classmethod
    def get_polars_format(cls, timeframe: str) -> str:
        """Get the Polars duration string for a timeframe."""
        metadata = cls.TIMEFRAME_METADATA.get(timeframe)
        if metadata:
            return metadata.get("polars_format", timeframe)
        return timeframe

    @classmethod
    def is_weekly(cls, timeframe: str) -> bool:
        """True for timeframes that use the weekly risk and backtest profile."""
        metadata = cls.TIMEFRAME_METADATA.get(timeframe, {})
        return bool(metadata.get("weekly", False))

    @classmethod
    def get_major_timeframe(cls, timeframe: str) -> str | None:
        """Get the trend-filter timeframe for a primary timeframe, if one is defined."""
        return cls.MAJOR_TIMEFRAMES.get(timeframe)


def _validate_timeframe_value(v: str) -> str:
    if not TimeframeConfig.validate_timeframe(v):
        raise ValueError(
            f"Invalid timeframe '{v}'. Supported timeframes: {sorted(TimeframeConfig.TIMEFRAME_METADATA.keys())}"
        )
    return v


class BollingerConfig(BaseModel):
    """Configuration for Bollinger Bands."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    period: int = Field(default=20, ge=2, description="Lookback for the middle band SMA", examples=[20])
    std_dev: float = Field(
        default=2.0,
        gt=0,
        description="Band width in population standard deviations",
        examples=[2.0, 2.5],
    )


class KeltnerConfig(BaseModel):
    """Configuration for Keltner Channels."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    ema_period: int = Field(default=20, ge=1, description="EMA period of the channel midline")
    atr_period: int = Field(default=10, ge=1, description="ATR period of the channel width")
    multiplier: float = Field(
        default=1.5,
        gt=0,
        description="ATR multiple added to / subtracted from the midline",
        json_schema_extra={"note": "1.5 pairs with Bollinger(20, 2) for power-squeeze detection"},
    )


class ParabolicSARConfig(BaseModel):
    """Configuration for Parabolic SAR."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    step: float = Field(default=0.02, gt=0, description="Acceleration factor increment")
    max_step: float = Field(default=0.2, gt=0, description="Acceleration factor cap")

    @model_validator(mode="after")
    def validate_step_range(self) -> Self:
        if self.step > self.max_step:
            raise ValueError("step cannot exceed max_step")
        return self


class StochasticConfig(BaseModel):
    """Configuration for the stochastic oscillator."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    k_period: int = Field(default=14, ge=1, description="%K lookback window")
    d_period: int = Field(default=3, ge=1, description="%D smoothing window (SMA of %K)")


class IndicatorsConfig(BaseModel):
    """Complete configuration for the indicators component."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    ema_trend_period: int = Field(
        default=200,
        ge=1,
        description="EMA period used as the long-term trend filter",
        json_schema_extra={"output_column": "ema200"},
    )
    atr_period: int = Field(default=14, ge=1, description="ATR period")
    rsi_period: int = Field(default=14, ge=1, description="RSI period (Wilder smoothing)")
    mfi_period: int = Field(default=14, ge=1, description="Money Flow Index period")
    volume_oscillator_short: int = Field(default=5, ge=1, description="Short volume SMA period")
    volume_oscillator_long: int = Field(default=20, ge=1, description="Long volume SMA period")
    vix_fix_period: int = Field(default=22, ge=1, description="Williams VixFix highest-close lookback")
    chandelier_multiplier: float = Field(default=3.0, gt=0, description="ATR multiple below the highest high")
    bollinger: BollingerConfig = Field(default_factory=BollingerConfig)
    keltner: KeltnerConfig = Field(default_factory=KeltnerConfig)
    sar: ParabolicSARConfig = Field(default_factory=ParabolicSARConfig)
    stochastic: StochasticConfig = Field(default_factory=StochasticConfig)

    @model_validator(mode="after")
    def validate_oscillator_periods(self) -> Self:
        if self.volume_oscillator_short >= self.volume_oscillator_long:
            raise ValueError("volume_oscillator_short must be smaller than volume_oscillator_long")
        return self


class StrategyConfig(BaseModel):
    """Risk parameters for the strategy decision."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    take_profit_multiplier: float = Field(default=4.5, gt=0, description="ATR multiple for target 1 (sub-weekly)")
    stop_loss_multiplier: float = Field(default=3.0, gt=0, description="ATR multiple for the fallback stop")
    weekly_take_profit_multiplier: float = Field(default=7.0, gt=0, description="ATR multiple for target 1 (weekly)")
    weekly_stop_loss_multiplier: float = Field(default=4.0, gt=0, description="ATR multiple for the weekly stop")
    price_precision: int = Field(
        default=2,
        ge=0,
        description="Decimal places for target and stop prices",
        json_schema_extra={"note": "Targets and stops are consumed as 2-decimal quotes"},
    )

    def multipliers(self, timeframe: str) -> tuple[float, float]:
        """Return (take_profit, stop_loss) ATR multipliers for a timeframe."""
        if TimeframeConfig.is_weekly(timeframe):
            return self.weekly_take_profit_multiplier, self.weekly_stop_loss_multiplier
        return self.take_profit_multiplier, self.stop_loss_multiplier


class BacktestConfig(BaseModel):
    """Forward-simulation parameters for signal validation."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    max_markers: int = Field(default=50, ge=1, description="Most recent BUY markers to evaluate")
    lookahead: int = Field(default=60, ge=2, description="Forward horizon in bars (sub-weekly)")
    weekly_lookahead: int = Field(default=52, ge=2, description="Forward horizon in bars (weekly)")
    profit_threshold: float = Field(
        default=0.07,
        gt=0,
        description="Fractional gain over the entry close counted as a win (sub-weekly)",
        json_schema_extra={"unit": "decimal_percentage"},
    )
    weekly_profit_threshold: float = Field(
        default=0.15,
        gt=0,
        description="Fractional gain over the entry close counted as a win (weekly)",
        json_schema_extra={"unit": "decimal_percentage"},
    )

    def horizon(self, timeframe: str) -> tuple[int, float]:
        """Return (lookahead, profit_threshold) for a timeframe."""
        if TimeframeConfig.is_weekly(timeframe):
            return self.weekly_lookahead, self.weekly_profit_threshold
        return self.lookahead, self.profit_threshold


class EngineConfig(BaseModel):
    """Configuration for the walk-forward signal engine."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    timeframe: str = Field(
        default="1d",
        description="Timeframe of the primary bar series",
        examples=["15m", "1d", "1wk"],
        json_schema_extra={"supported_timeframes": list(TimeframeConfig.TIMEFRAME_METADATA.keys())},
    )
    min_bars: int = Field(default=50, ge=1, description="Minimum bars required to generate signals")
    warmup_bars: int = Field(default=20, ge=2, description="First bar index evaluated by the walk-forward loop")
    cooldown_bars: int = Field(
        default=10,
        ge=0,
        description="Bars that must pass before another marker of the same direction",
    )
    mtf_min_bars: int = Field(
        default=50,
        ge=1,
        description="Major-timeframe series must hold more bars than this to activate the trend filter",
    )
    indicators: IndicatorsConfig = Field(default_factory=IndicatorsConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)

    @field_validator("timeframe")
    @classmethod
    def validate_timeframe(cls, v: str) -> str:
        return _validate_timeframe_value(v)


class AggregationConfig(BaseModel):
    """Configuration for resampling bars into a major timeframe."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    target_timeframe: str = Field(
        default="1wk",
        description="Timeframe to aggregate into",
        examples=["1d", "1wk"],
    )
    timezone: str = Field(
        default="UTC",
        description="Timezone used for bucket boundaries",
        examples=["UTC", "US/Eastern", "Asia/Seoul"],
        json_schema_extra={"validation": "Must be valid pytz timezone"},
    )

    @field_validator("target_timeframe")
    @classmethod
    def validate_target_timeframe(cls, v: str) -> str:
        return _validate_timeframe_value(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError as err:
            raise ValueError(f"Unknown timezone: {v}") from err
        return v


class FactoryConfig(BaseModel):
    """Root configuration for Factory.create_all."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    engine: EngineConfig = Field(default_factory=EngineConfig)
    aggregation: AggregationConfig | None = Field(
        default=None,
        description="Optional major-timeframe aggregation; defaults to the engine timeframe's major timeframe",
    )

    @model_validator(mode="after")
    def apply_major_timeframe_default(self) -> Self:
        if self.aggregation is None:
            major = TimeframeConfig.get_major_timeframe(self.engine.timeframe)
            if major is not None:
                self.aggregation = AggregationConfig(target_timeframe=major)
        return self


# =============================================================================
# DataFrame Schema Models
# =============================================================================


def _indicator_field(description: str, category: str, warmup: str, dtype=Float64, nullable: bool = True, **extra):
    return Field(
        default=None,
        description=description,
        json_schema_extra={
            "polars_dtype": dtype,
            "output": True,
            "category": category,
            "warmup": warmup,
            "nullable": nullable,
            **extra,
        },
    )


class IndicatorSchema(BaseModel):
    """
    **Complete Indicator Schema**

    Defines the input OHLCV columns and every column created by
    ``Indicators.process``. Undefined warm-up entries are nulls.
    """

    model_config = ConfigDict(str_strip_whitespace=True, validate_default=True, extra="forbid")

    # Base OHLCV columns (input data)
    timestamp: datetime = Field(
        description="Timestamp for each bar",
        json_schema_extra={"polars_dtype": Datetime, "input": True, "category": "base_ohlc", "nullable": False},
    )
    open: float = Field(
        description="Opening price",
        gt=0,
        json_schema_extra={"polars_dtype": Float64, "input": True, "category": "base_ohlc", "nullable": False},
    )
    high: float = Field(
        description="Highest price",
        gt=0,
        json_schema_extra={"polars_dtype": Float64, "input": True, "category": "base_ohlc", "nullable": False},
    )
    low: float = Field(
        description="Lowest price",
        gt=0,
        json_schema_extra={"polars_dtype": Float64, "input": True, "category": "base_ohlc", "nullable": False},
    )
    close: float = Field(
        description="Closing price",
        gt=0,
        json_schema_extra={"polars_dtype": Float64, "input": True, "category": "base_ohlc", "nullable": False},
    )
    volume: float = Field(
        description="Traded volume",
        ge=0,
        json_schema_extra={"polars_dtype": Float64, "input": True, "category": "base_ohlc", "nullable": False},
    )
    symbol: str | None = Field(
        default=None,
        description="Trading symbol or ticker",
        json_schema_extra={
            "polars_dtype": String,
            "input": True,
            "category": "base_ohlc",
            "optional": True,
            "nullable": True,
        },
    )

    # Moving averages
    sma5: float | None = _indicator_field("5-period simple moving average of close", "moving_average", "4 bars")
    sma10: float | None = _indicator_field("10-period simple moving average of close", "moving_average", "9 bars")
    sma20: float | None = _indicator_field("20-period simple moving average of close", "moving_average", "19 bars")
    sma60: float | None = _indicator_field("60-period simple moving average of close", "moving_average", "59 bars")
    sma120: float | None = _indicator_field("120-period simple moving average of close", "moving_average", "119 bars")
    sma240: float | None = _indicator_field("240-period simple moving average of close", "moving_average", "239 bars")
    ema200: float | None = _indicator_field(
        "Trend EMA of close seeded with the first close", "moving_average", "none", nullable=False
    )

    # Volatility
    atr: float | None = _indicator_field("Average true range", "volatility", "period bars")
    bb_upper: float | None = _indicator_field("Bollinger upper band", "volatility", "period - 1 bars")
    bb_middle: float | None = _indicator_field("Bollinger middle band (SMA)", "volatility", "period - 1 bars")
    bb_lower: float | None = _indicator_field("Bollinger lower band", "volatility", "period - 1 bars")
    bb_width: float | None = _indicator_field(
        "Bollinger bandwidth as percent of the middle band",
        "volatility",
        "period - 1 bars",
        calculation="(upper - lower) / middle * 100, 0 when middle is 0",
    )
    keltner_upper: float | None = _indicator_field("Keltner upper channel", "volatility", "atr_period bars")
    keltner_lower: float | None = _indicator_field("Keltner lower channel", "volatility", "atr_period bars")
    chandelier_stop: float | None = _indicator_field(
        "Highest high of the last 23 bars minus multiplier * ATR", "volatility", "atr period bars"
    )
    vix_fix: float | None = _indicator_field(
        "Williams VixFix percent distance of the low from the highest close", "volatility", "0 before period", nullable=False
    )
    vix_fix_bottom: bool | None = _indicator_field(
        "True when VixFix exceeds its SMA20 + 2 standard deviations", "volatility", "19 bars", dtype=Boolean, nullable=False
    )

    # Momentum
    rsi: float | None = _indicator_field("Relative strength index (0-100)", "momentum", "period bars")
    mfi: float | None = _indicator_field("Money flow index (0-100), 50 before warm-up", "momentum", "50 default", nullable=False)
    macd: float | None = _indicator_field("EMA12 - EMA26", "momentum", "none", nullable=False)
    macd_signal: float | None = _indicator_field("EMA9 of the MACD line", "momentum", "none", nullable=False)
    macd_histogram: float | None = _indicator_field("MACD line minus signal line", "momentum", "none", nullable=False)
    stoch_k: float | None = _indicator_field("Stochastic %K, 50 before warm-up", "momentum", "50 default", nullable=False)
    stoch_d: float | None = _indicator_field("Stochastic %D (SMA of %K)", "momentum", "d_period - 1 bars")
    volume_oscillator: float | None = _indicator_field(
        "Percent difference of short vs long volume SMA, 0 when undefined", "momentum", "0 default", nullable=False
    )

    # Trend
    sar: float | None = _indicator_field("Parabolic SAR", "trend", "null below 2 bars")
    tenkan: float | None = _indicator_field("Ichimoku conversion line (9)", "trend", "8 bars")
    kijun: float | None = _indicator_field("Ichimoku base line (26)", "trend", "25 bars")
    span_a: float | None = _indicator_field("Ichimoku leading span A", "trend", "25 bars")
    span_b: float | None = _indicator_field("Ichimoku leading span B (52)", "trend", "51 bars")

    @classmethod
    def get_column_descriptions(cls) -> dict[str, str]:
        """
        Get descriptions for all possible DataFrame columns.

        Returns:
            Dictionary mapping column names to their descriptions
        """
        descriptions = {}

        for field_name, field_info in cls.model_fields.items():
            if field_info.description:
                descriptions[field_name] = field_info.description

        return descriptions

    @classmethod
    def get_polars_dtypes(cls) -> dict[str, Any]:
        """
        Get Polars data types for all DataFrame columns.

        Returns:
            Dictionary mapping column names to their Polars data types
        """
        types = {}

        for field_name, field_info in cls.model_fields.items():
            json_extra = getattr(field_info, "json_schema_extra", {})
            if isinstance(json_extra, dict) and "polars_dtype" in json_extra:
                types[field_name] = json_extra["polars_dtype"]

        return types

    @classmethod
    def get_column_categories(cls) -> dict[str, list[str]]:
        """
        Get columns organized by functional categories.

        Returns:
            Dictionary mapping category names to lists of column names
        """
        categories: dict[str, list[str]] = {}

        for field_name, field_info in cls.model_fields.items():
            json_extra = getattr(field_info, "json_schema_extra", {})
            if isinstance(json_extra, dict) and "category" in json_extra:
                categories.setdefault(json_extra["category"], []).append(field_name)

        for category in categories:
            categories[category].sort()

        return categories

    @classmethod
    def get_output_columns(cls) -> list[str]:
        """
        Get output columns in declaration order.

        Returns:
            List of column names produced by the indicators component
        """
        return [
            field_name
            for field_name, field_info in cls.model_fields.items()
            if (getattr(field_info, "json_schema_extra", {}) or {}).get("output")
        ]

    @classmethod
    def get_required_input_columns(cls) -> list[str]:
        """
        Get list of required input columns based on schema definition.

        Returns:
            List of column names that are required for input data
        """
        required_columns = []
        for field_name, field_info in cls.model_fields.items():
            json_extra = getattr(field_info, "json_schema_extra", {}) or {}
            if json_extra.get("input") is True and not json_extra.get("optional", False):
                required_columns.append(field_name)
        return sorted(required_columns)

    @classmethod
    def get_field_metadata(cls, field_name: str) -> dict[str, Any]:
        """
        Get json_schema_extra metadata for a field, safely handling missing data.

        Args:
            field_name: Name of the field to get metadata for

        Returns:
            Dictionary of metadata from json_schema_extra, empty dict if not found
        """
        field_info = cls.model_fields.get(field_name)
        if not field_info:
            return {}
        return getattr(field_info, "json_schema_extra", {}) or {}
