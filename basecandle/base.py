"""
Base component classes and bar containers for basecandle.

This module provides the abstract base class shared by all components and the
list-backed bar series used by the per-bar structural and pattern logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pandas import DataFrame as PandasDataFrame
from polars import DataFrame as PolarsDataFrame
from polars import col, from_pandas

# Required columns for OHLCV data
REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]

# Optional columns
OPTIONAL_COLUMNS = ["symbol"]


def greater(left: float | None, right: float | None) -> bool:
    """``left > right``, false when either side is undefined."""
    return left is not None and right is not None and left > right


class Component(ABC):
    """Base class for all basecandle components."""

    def __init__(self):
        """Initialize base component with metadata tracking."""
        from datetime import datetime

        self._created_at = datetime.now()

    @abstractmethod
    def process(self, data: PolarsDataFrame | PandasDataFrame) -> PolarsDataFrame:
        """
        Process data and return Polars DataFrame results.

        Args:
            data: Input DataFrame (Polars or Pandas)

        Returns:
            Processed PolarsDataFrame with results
        """
        pass

    @abstractmethod
    def validate_input(self, data: PolarsDataFrame | PandasDataFrame) -> None:
        """
        Validate input data format.

        Args:
            data: Input DataFrame to validate

        Raises:
            ValueError: If data format is invalid, with specific error message
        """
        pass

    def _convert_to_polars(self, data: PolarsDataFrame | PandasDataFrame) -> PolarsDataFrame:
        """
        Convert input DataFrame to Polars if needed.

        Args:
            data: Input DataFrame (Polars or Pandas)

        Returns:
            PolarsDataFrame (converted if input was Pandas)
        """
        if isinstance(data, PandasDataFrame):
            return from_pandas(data)
        elif isinstance(data, PolarsDataFrame):
            return data
        else:
            raise TypeError(f"Unsupported data type: {type(data)}. Expected pandas.DataFrame or polars.DataFrame")

    def _validate_bars(self, df: PolarsDataFrame) -> None:
        """
        Check required OHLCV columns and price integrity.

        Raises:
            ValueError: If columns are missing or any bar violates OHLC ordering
        """
        from .schemas import IndicatorSchema

        required_cols = IndicatorSchema.get_required_input_columns()
        missing_cols = [name for name in required_cols if name not in df.columns]
        if missing_cols:
            raise ValueError(f"Missing required columns: {missing_cols}")

        if len(df) == 0:
            return

        validations = df.select(
            [
                (col("high") >= col("low")).all().alias("high_gte_low"),
                (col("high") >= col("open")).all().alias("high_gte_open"),
                (col("high") >= col("close")).all().alias("high_gte_close"),
                (col("low") <= col("open")).all().alias("low_lte_open"),
                (col("low") <= col("close")).all().alias("low_lte_close"),
                (col("volume") >= 0).all().alias("volume_non_negative"),
            ]
        )

        validation_results = validations.row(0)
        validation_names = [
            "high >= low",
            "high >= open",
            "high >= close",
            "low <= open",
            "low <= close",
            "volume >= 0",
        ]

        failed_validations = [
            name for name, result in zip(validation_names, validation_results, strict=True) if not result
        ]
        if failed_validations:
            raise ValueError(f"Invalid price data: failed validations: {failed_validations}")


@dataclass(frozen=True)
class Bar:
    """Single OHLCV bar."""

    timestamp: Any
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low


@dataclass(frozen=True)
class BarSeries:
    """
    Column-oriented bar history with aligned indicator columns.

    Per-bar analyzers index into these lists with an explicit ``end`` index
    instead of copying prefixes, so a value at ``end`` is only ever derived from
    ``[0..end]``. Undefined indicator entries are ``None``.
    """

    timestamp: list
    open: list[float]
    high: list[float]
    low: list[float]
    close: list[float]
    volume: list[float]
    indicators: dict[str, list] = field(default_factory=dict)

    @classmethod
    def from_frame(cls, df: PolarsDataFrame, indicator_columns: list[str] | None = None) -> "BarSeries":
        """
        Build a BarSeries from a Polars DataFrame.

        Args:
            df: DataFrame with OHLCV columns (and optionally indicator columns)
            indicator_columns: Indicator columns to carry over; defaults to every
                column that is not part of the OHLCV/symbol set

        Returns:
            BarSeries with float price/volume lists
        """
        if indicator_columns is None:
            indicator_columns = [
                name for name in df.columns if name not in REQUIRED_COLUMNS and name not in OPTIONAL_COLUMNS
            ]

        return cls(
            timestamp=df["timestamp"].to_list(),
            open=[float(v) for v in df["open"].to_list()],
            high=[float(v) for v in df["high"].to_list()],
            low=[float(v) for v in df["low"].to_list()],
            close=[float(v) for v in df["close"].to_list()],
            volume=[float(v) for v in df["volume"].to_list()],
            indicators={name: df[name].to_list() for name in indicator_columns},
        )

    def __len__(self) -> int:
        return len(self.close)

    def bar(self, i: int) -> Bar:
        return Bar(
            timestamp=self.timestamp[i],
            open=self.open[i],
            high=self.high[i],
            low=self.low[i],
            close=self.close[i],
            volume=self.volume[i],
        )

    def value(self, name: str, i: int) -> Any:
        """Indicator value at ``i``, or None when the column is absent or ``i`` is out of range."""
        values = self.indicators.get(name)
        if values is None or i < 0 or i >= len(values):
            return None
        return values[i]

    def last_index(self, end: int | None = None) -> int:
        """Resolve an optional ``end`` argument to a concrete index."""
        return len(self) - 1 if end is None else end
