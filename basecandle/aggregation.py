"""
OHLC resampling into the major timeframe.

This module builds the secondary bar series used by the major-timeframe trend filter
from the primary bars, with timezone-aware bucket boundaries.
"""

import logging

from pandas import DataFrame as PandasDataFrame
from polars import DataFrame as PolarsDataFrame
from polars import Datetime, Int64, col, first, last, max, min, sum

from .base import OPTIONAL_COLUMNS, REQUIRED_COLUMNS, Component
from .schemas import AggregationConfig, TimeframeConfig


class Aggregation(Component):
    """
    Resample OHLCV bars into a coarser timeframe.

    Buckets are left-closed and labelled by their start; open is the first open,
    high the maximum, low the minimum, close the last close and volume the sum.
    """

    # Type hints for commonly accessed attributes
    timezone: str
    target_timeframe: str

    def __init__(self, config: AggregationConfig | None = None):
        """
        Initialize aggregation component with validated configuration.

        Args:
            config: Validated AggregationConfig; defaults to weekly buckets in UTC
        """
        super().__init__()

        self.config = config or AggregationConfig()
        self.timezone = self.config.timezone
        self.target_timeframe = self.config.target_timeframe

    def process(self, data: PolarsDataFrame | PandasDataFrame) -> PolarsDataFrame:
        """
        Resample bars into the target timeframe.

        Args:
            data: OHLCV bars

        Returns:
            Aggregated bars with timezone-aware timestamps in the configured timezone
        """
        self.validate_input(data)

        df = self._convert_to_polars(data)
        self.validate_input_timezones(df)
        df = self.normalize_timezone(df)

        return self._aggregate(df)

    def _aggregate(self, data: PolarsDataFrame) -> PolarsDataFrame:
        polars_format = TimeframeConfig.get_polars_format(self.target_timeframe)

        sort_cols = ["symbol", "timestamp"] if "symbol" in data.columns else ["timestamp"]
        df = data.sort(sort_cols)

        agg_expressions = [
            first("open").alias("open"),
            max("high").alias("high"),
            min("low").alias("low"),
            last("close").alias("close"),
            sum("volume").alias("volume"),
        ]

        if "symbol" in df.columns:
            result = df.group_by_dynamic(
                "timestamp", every=polars_format, period=polars_format, group_by="symbol", closed="left"
            ).agg(agg_expressions)
        else:
            result = df.group_by_dynamic("timestamp", every=polars_format, period=polars_format, closed="left").agg(
                agg_expressions
            )

        # Integer volume avoids float drift from summation
        result = result.with_columns([col("volume").cast(Int64).alias("volume")])

        logging.debug(f"Aggregated {len(df)} bars into {len(result)} {self.target_timeframe} bars")

        ordered = [name for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS if name in result.columns]
        return result.select(ordered).sort(sort_cols)

    def validate_input_timezones(self, data: PolarsDataFrame) -> None:
        """
        Log timezone handling for the input timestamps.

        Naive timestamps are assumed to already be in the configured timezone and
        produce a warning; aware timestamps in another zone are converted.
        """
        current_tz = getattr(data.schema["timestamp"], "time_zone", None)

        if current_tz is None:
            first_row_preview = data[0] if len(data) > 0 else "No data"
            logging.warning(
                f"Naive timestamps detected - assuming data is already in {self.timezone}\n"
                f"First row: {first_row_preview}\n"
                f"If your data is UTC, convert before aggregating:\n"
                f"  df = df.with_columns(\n"
                f"      pl.col('timestamp')\n"
                f"        .dt.replace_time_zone('UTC')\n"
                f"        .dt.convert_time_zone('{self.timezone}')\n"
                f"  )"
            )
        elif current_tz != self.timezone:
            logging.info(f"Converting timestamps from {current_tz} to {self.timezone}")

    def normalize_timezone(self, data: PolarsDataFrame) -> PolarsDataFrame:
        """
        Convert timestamps to the configured timezone.

        Naive timestamps gain the configured timezone; aware timestamps in another
        zone are converted; timestamps already in the zone are left as they are.
        """
        current_tz = getattr(data.schema["timestamp"], "time_zone", None)

        if current_tz is None:
            return data.with_columns([col("timestamp").dt.replace_time_zone(self.timezone)])
        if current_tz != self.timezone:
            return data.with_columns([col("timestamp").dt.convert_time_zone(self.timezone)])
        return data

    def validate_input(self, data: PolarsDataFrame | PandasDataFrame) -> None:
        """
        Validate input data format.

        Raises:
            TypeError: If data is not a Polars or Pandas DataFrame
            ValueError: If columns are missing, prices are inconsistent or timestamps are not datetimes
        """
        df = self._convert_to_polars(data)
        self._validate_bars(df)

        if not isinstance(df.schema["timestamp"], Datetime):
            raise ValueError(f"Column 'timestamp' must be a datetime, got {df.schema['timestamp']}")
