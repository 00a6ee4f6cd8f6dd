"""
Vectorized technical indicator library.

This module provides the indicator transforms consumed by the structural analyzers,
pattern detectors and strategy decision. Every function returns a Polars Series (or a
DataFrame of Series for multi-line indicators) with the same length as its input.
Warm-up entries are nulls unless the indicator defines an explicit neutral default.

Each value at index ``i`` only depends on bars ``[0..i]``, so a column computed once
over the full history can be read at ``i`` in place of a recomputation on the prefix.
"""

import logging

from pandas import DataFrame as PandasDataFrame
from polars import DataFrame as PolarsDataFrame
from polars import Float64, Series, coalesce, col, lit, max_horizontal, when

from .base import OPTIONAL_COLUMNS, REQUIRED_COLUMNS, Component
from .schemas import IndicatorSchema, IndicatorsConfig

# Simple moving averages appended by Indicators.process
SMA_PERIODS = (5, 10, 20, 60, 120, 240)

# Chandelier stop looks at the current bar plus this many prior bars
CHANDELIER_LOOKBACK = 22

# Williams VixFix bottom band
VIX_FIX_BAND_PERIOD = 20
VIX_FIX_BAND_STD = 2.0


# =============================================================================
# Moving averages
# =============================================================================


def sma(values: Series, period: int) -> Series:
    """Trailing arithmetic mean; null for the first ``period - 1`` indices."""
    return values.cast(Float64).rolling_mean(window_size=period).alias(f"sma{period}")


def ema(values: Series, period: int) -> Series:
    """
    Exponential moving average seeded with the first value.

    Uses ``k = 2 / (period + 1)`` from index 0 with no separate warm-up.
    """
    return values.cast(Float64).ewm_mean(span=period, adjust=False).alias(f"ema{period}")


# =============================================================================
# Volatility
# =============================================================================


def _true_range():
    prev_close = col("close").shift(1)
    return (
        when(prev_close.is_null())
        .then(lit(None, dtype=Float64))
        .otherwise(
            max_horizontal(
                col("high") - col("low"),
                (col("high") - prev_close).abs(),
                (col("low") - prev_close).abs(),
            )
        )
    )


def atr(bars: PolarsDataFrame, period: int = 14) -> Series:
    """
    Average true range.

    The first bar has no previous close and contributes no true range, so the
    trailing mean is null for indices ``< period``.
    """
    return bars.select(_true_range().cast(Float64).rolling_mean(window_size=period).alias("atr")).to_series()


def bollinger_bands(values: Series, period: int = 20, std_dev: float = 2.0) -> PolarsDataFrame:
    """
    Bollinger Bands with population standard deviation.

    Returns:
        DataFrame with ``bb_upper``, ``bb_middle``, ``bb_lower`` and ``bb_width``
        (percent of the middle band, 0 when the middle band is 0)
    """
    frame = values.cast(Float64).to_frame("value")
    middle = col("value").rolling_mean(window_size=period)
    deviation = col("value").rolling_var(window_size=period, ddof=0).clip(lower_bound=0.0).sqrt()

    bands = frame.select(
        [
            (middle + deviation * std_dev).alias("bb_upper"),
            middle.alias("bb_middle"),
            (middle - deviation * std_dev).alias("bb_lower"),
        ]
    )
    return bands.with_columns(
        when(col("bb_middle") == 0)
        .then(0.0)
        .otherwise((col("bb_upper") - col("bb_lower")) / col("bb_middle") * 100)
        .alias("bb_width")
    )


def keltner_channels(
    bars: PolarsDataFrame, ema_period: int = 20, atr_period: int = 10, multiplier: float = 1.5
) -> PolarsDataFrame:
    """Keltner Channels (EMA +/- multiplier * ATR); null where the ATR is null."""
    midline = ema(bars["close"], ema_period)
    width = atr(bars, atr_period) * multiplier
    return PolarsDataFrame(
        [
            (midline + width).alias("keltner_upper"),
            (midline - width).alias("keltner_lower"),
        ]
    )


def chandelier_stop(
    bars: PolarsDataFrame,
    atr_values: Series | None = None,
    multiplier: float = 3.0,
    atr_period: int = 14,
) -> Series:
    """
    Highest high of the current bar and the previous 22 bars, minus ``multiplier * ATR``.

    Args:
        bars: OHLC DataFrame
        atr_values: Precomputed ATR aligned with ``bars``; computed with ``atr_period`` if omitted
        multiplier: ATR multiple subtracted from the highest high
        atr_period: ATR period used when ``atr_values`` is omitted

    Returns:
        Series named ``chandelier_stop``, null where the ATR is null
    """
    if atr_values is None:
        atr_values = atr(bars, atr_period)

    window = CHANDELIER_LOOKBACK + 1
    frame = bars.select(col("high").cast(Float64)).with_columns(atr_values.alias("atr"))
    highest_high = coalesce(col("high").rolling_max(window_size=window), col("high").cum_max())
    return frame.select((highest_high - col("atr") * multiplier).alias("chandelier_stop")).to_series()


def williams_vix_fix(bars: PolarsDataFrame, period: int = 22) -> PolarsDataFrame:
    """
    Williams VixFix: percent distance of the low from the highest close.

    The value is 0 for indices ``< period``. ``vix_fix_bottom`` flags values above the
    SMA20 of the VixFix plus two population standard deviations (false while that band
    is undefined).
    """
    highest_close = col("close").rolling_max(window_size=period)
    frame = bars.select(
        when(col("close").shift(period).is_null())
        .then(0.0)
        .otherwise((highest_close - col("low")) / highest_close * 100)
        .cast(Float64)
        .alias("vix_fix")
    )

    band = col("vix_fix").rolling_mean(window_size=VIX_FIX_BAND_PERIOD) + VIX_FIX_BAND_STD * col("vix_fix").rolling_var(
        window_size=VIX_FIX_BAND_PERIOD, ddof=0
    ).clip(lower_bound=0.0).sqrt()
    return frame.with_columns((col("vix_fix") > band).fill_null(False).alias("vix_fix_bottom"))


# =============================================================================
# Momentum
# =============================================================================


def rsi(values: Series, period: int = 14) -> Series:
    """
    Relative strength index with Wilder smoothing.

    Seeded with the simple average gain/loss over the first ``period`` differences. The
    value is 100 when the average loss is 0, null for indices ``< period``, and null
    everywhere when the series holds no more than ``period`` values.
    """
    prices = values.cast(Float64).to_list()
    result: list[float | None] = [None] * len(prices)
    if len(prices) <= period:
        return Series("rsi", result, dtype=Float64)

    def _value(avg_gain: float, avg_loss: float) -> float:
        if avg_loss == 0:
            return 100.0
        return 100 - (100 / (1 + avg_gain / avg_loss))

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        diff = prices[i] - prices[i - 1]
        if diff >= 0:
            gains += diff
        else:
            losses -= diff

    avg_gain = gains / period
    avg_loss = losses / period
    result[period] = _value(avg_gain, avg_loss)

    for i in range(period + 1, len(prices)):
        diff = prices[i] - prices[i - 1]
        avg_gain = (avg_gain * (period - 1) + (diff if diff >= 0 else 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + (-diff if diff < 0 else 0.0)) / period
        result[i] = _value(avg_gain, avg_loss)

    return Series("rsi", result, dtype=Float64)


def mfi(bars: PolarsDataFrame, period: int = 14) -> Series:
    """
    Money flow index.

    Flow is classified positive/negative by comparing the typical price with the
    previous one. The ratio is 100 when the negative sum is 0, and the value is 50
    for indices ``< period``.
    """
    typical = (col("high") + col("low") + col("close")) / 3
    previous = typical.shift(1)
    flow = typical * col("volume")

    positive = when(previous.is_null()).then(None).when(typical > previous).then(flow).otherwise(0.0)
    negative = when(previous.is_null()).then(None).when(typical < previous).then(flow).otherwise(0.0)

    sums = bars.select(
        [
            positive.cast(Float64).rolling_sum(window_size=period).alias("positive"),
            negative.cast(Float64).rolling_sum(window_size=period).alias("negative"),
        ]
    )
    ratio = when(col("negative") == 0).then(100.0).otherwise(col("positive") / col("negative"))
    return sums.select(
        when(col("positive").is_null() | col("negative").is_null())
        .then(50.0)
        .otherwise(100 - (100 / (1 + ratio)))
        .alias("mfi")
    ).to_series()


def macd(values: Series, fast: int = 12, slow: int = 26, signal: int = 9) -> PolarsDataFrame:
    """MACD line (EMA fast - EMA slow), its signal EMA and the histogram."""
    line = (ema(values, fast) - ema(values, slow)).alias("macd")
    signal_line = ema(line, signal).alias("macd_signal")
    return PolarsDataFrame([line, signal_line, (line - signal_line).alias("macd_histogram")])


def volume_oscillator(volume: Series, short: int = 5, long: int = 20) -> Series:
    """Percent difference of the short vs. long volume SMA; 0 when either is null or the long SMA is 0."""
    frame = PolarsDataFrame([sma(volume, short).alias("short"), sma(volume, long).alias("long")])
    return frame.select(
        when(col("short").is_null() | col("long").is_null() | (col("long") == 0))
        .then(0.0)
        .otherwise((col("short") - col("long")) / col("long") * 100)
        .alias("volume_oscillator")
    ).to_series()


def stochastic(bars: PolarsDataFrame, k_period: int = 14, d_period: int = 3) -> PolarsDataFrame:
    """
    Stochastic oscillator.

    %K is 50 before ``k_period - 1`` and wherever the window's highest high equals its
    lowest low. %D is the ``d_period`` SMA of %K.
    """
    lowest = col("low").rolling_min(window_size=k_period)
    highest = col("high").rolling_max(window_size=k_period)
    frame = bars.select(
        when(lowest.is_null() | (highest == lowest))
        .then(50.0)
        .otherwise((col("close") - lowest) / (highest - lowest) * 100)
        .cast(Float64)
        .alias("stoch_k")
    )
    return frame.with_columns(col("stoch_k").rolling_mean(window_size=d_period).alias("stoch_d"))


# =============================================================================
# Trend
# =============================================================================


def parabolic_sar(bars: PolarsDataFrame, step: float = 0.02, max_step: float = 0.2) -> Series:
    """
    Parabolic SAR.

    Starts bullish at the first low with the first high as extreme point. All values
    are null for fewer than 2 bars.
    """
    high = bars["high"].cast(Float64).to_list()
    low = bars["low"].cast(Float64).to_list()
    if len(high) < 2:
        return Series("sar", [None] * len(high), dtype=Float64)

    sar = [low[0]]
    bullish = True
    extreme = high[0]
    factor = step

    for i in range(1, len(high)):
        next_sar = sar[i - 1] + factor * (extreme - sar[i - 1])

        if bullish:
            if low[i] < next_sar:
                bullish = False
                next_sar = extreme
                extreme = low[i]
                factor = step
            else:
                if high[i] > extreme:
                    extreme = high[i]
                    factor = min(factor + step, max_step)
                prior_low = low[i - 2] if i > 1 else low[i - 1]
                next_sar = min(next_sar, low[i - 1], prior_low)
        else:
            if high[i] > next_sar:
                bullish = True
                next_sar = extreme
                extreme = high[i]
                factor = step
            else:
                if low[i] < extreme:
                    extreme = low[i]
                    factor = min(factor + step, max_step)
                prior_high = high[i - 2] if i > 1 else high[i - 1]
                next_sar = max(next_sar, high[i - 1], prior_high)

        sar.append(next_sar)

    return Series("sar", sar, dtype=Float64)


def ichimoku_cloud(bars: PolarsDataFrame, tenkan: int = 9, kijun: int = 26, span_b: int = 52) -> PolarsDataFrame:
    """Ichimoku lines as (highest high + lowest low) / 2 over each window; span A = (tenkan + kijun) / 2."""

    def midpoint(period: int):
        return (col("high").rolling_max(window_size=period) + col("low").rolling_min(window_size=period)) / 2

    frame = bars.select(
        [
            midpoint(tenkan).cast(Float64).alias("tenkan"),
            midpoint(kijun).cast(Float64).alias("kijun"),
            midpoint(span_b).cast(Float64).alias("span_b"),
        ]
    )
    return frame.select(
        [
            col("tenkan"),
            col("kijun"),
            ((col("tenkan") + col("kijun")) / 2).alias("span_a"),
            col("span_b"),
        ]
    )


class Indicators(Component):
    """
    Appends every indicator column declared by ``IndicatorSchema`` to OHLCV bars.

    Columns are computed once over the full history with vectorized Polars expressions
    (SAR and RSI use their recursive definitions).
    """

    # Type hints for commonly accessed attributes
    config: IndicatorsConfig

    def __init__(self, config: IndicatorsConfig):
        """
        Initialize indicators component with validated configuration.

        Args:
            config: Validated IndicatorsConfig with all indicator periods and multipliers
        """
        super().__init__()

        # Store the validated Pydantic config
        self.config = config

    def process(self, data: PolarsDataFrame | PandasDataFrame) -> PolarsDataFrame:
        """
        Calculate all indicators for OHLCV data.

        Args:
            data: Input DataFrame with OHLCV data, sorted by timestamp

        Returns:
            DataFrame with the input columns followed by all indicator columns
        """
        self.validate_input(data)

        df = self._convert_to_polars(data)
        df = df.with_columns([col(name).cast(Float64) for name in REQUIRED_COLUMNS if name != "timestamp"])

        if len(df) < self.config.ema_trend_period:
            logging.debug(
                f"Only {len(df)} bars for a {self.config.ema_trend_period}-period trend EMA; long-window columns stay null"
            )

        config = self.config
        close = df["close"]
        atr_values = atr(df, config.atr_period)

        series = [sma(close, period) for period in SMA_PERIODS]
        series.extend(
            [
                ema(close, config.ema_trend_period).alias("ema200"),
                atr_values,
                rsi(close, config.rsi_period),
                mfi(df, config.mfi_period),
                volume_oscillator(df["volume"], config.volume_oscillator_short, config.volume_oscillator_long),
                parabolic_sar(df, config.sar.step, config.sar.max_step),
                chandelier_stop(df, atr_values, config.chandelier_multiplier),
            ]
        )

        frames = [
            bollinger_bands(close, config.bollinger.period, config.bollinger.std_dev),
            keltner_channels(df, config.keltner.ema_period, config.keltner.atr_period, config.keltner.multiplier),
            macd(close),
            ichimoku_cloud(df),
            williams_vix_fix(df, config.vix_fix_period),
            stochastic(df, config.stochastic.k_period, config.stochastic.d_period),
        ]
        for frame in frames:
            series.extend(frame.get_columns())

        df = df.with_columns(series)
        return self._standardize_column_order(df)

    def _standardize_column_order(self, df: PolarsDataFrame) -> PolarsDataFrame:
        """Input columns first, then indicator columns in schema order."""
        output_columns = IndicatorSchema.get_output_columns()
        leading = [name for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS if name in df.columns]
        passthrough = [name for name in df.columns if name not in leading and name not in output_columns]
        return df.select(leading + passthrough + [name for name in output_columns if name in df.columns])

    def validate_input(self, data: PolarsDataFrame | PandasDataFrame) -> None:
        """
        Validate input data format.

        Raises:
            TypeError: If data is not a Polars or Pandas DataFrame
            ValueError: If data format is invalid, with specific error message
        """
        df = self._convert_to_polars(data)
        self._validate_bars(df)
