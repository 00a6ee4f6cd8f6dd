"""
Factory methods for basecandle component creation and configuration.

This module builds the indicator, aggregation and signal engine components from
validated Pydantic configuration models.
"""

from functools import lru_cache
from typing import Any, TypedDict

from .aggregation import Aggregation
from .indicators import Indicators
from .schemas import AggregationConfig, EngineConfig, FactoryConfig, IndicatorsConfig
from .signals import SignalEngine


class ComponentDict(TypedDict):
    """Type definition for component dictionary returned by Factory.create_all()."""

    engine: SignalEngine
    indicators: Indicators
    aggregation: Aggregation | None


class Factory:
    """
    Factory class for creating basecandle components.

    All methods accept validated Pydantic configuration models.
    """

    @staticmethod
    def create_indicators(config: IndicatorsConfig | None = None) -> Indicators:
        """
        Create indicators component from validated configuration.

        Example:
            >>> from basecandle.schemas import IndicatorsConfig
            >>> indicators = Factory.create_indicators(IndicatorsConfig(rsi_period=10))
        """
        return Indicators(config or IndicatorsConfig())

    @staticmethod
    def create_aggregation(config: AggregationConfig | None = None) -> Aggregation:
        """
        Create aggregation component from validated configuration.

        Example:
            >>> from basecandle.schemas import AggregationConfig
            >>> aggregation = Factory.create_aggregation(AggregationConfig(target_timeframe="1wk", timezone="Asia/Seoul"))
        """
        return Aggregation(config or AggregationConfig())

    @staticmethod
    def create_engine(config: EngineConfig | None = None) -> SignalEngine:
        """
        Create the walk-forward signal engine from validated configuration.

        Example:
            >>> from basecandle.schemas import EngineConfig
            >>> engine = Factory.create_engine(EngineConfig(timeframe="1wk"))
        """
        return SignalEngine(config or EngineConfig())

    @classmethod
    def create_all(cls, config: FactoryConfig | None = None) -> ComponentDict:
        """
        Create the engine, its indicators component and the optional aggregation component.

        Args:
            config: Validated FactoryConfig; ``aggregation`` is None when the engine
                timeframe has no major timeframe

        Returns:
            Dictionary of created components
        """
        config = config or FactoryConfig()
        return {
            "engine": cls.create_engine(config.engine),
            "indicators": cls.create_indicators(config.engine.indicators),
            "aggregation": cls.create_aggregation(config.aggregation) if config.aggregation else None,
        }

    @staticmethod
    @lru_cache(maxsize=1)
    def get_supported_timeframes() -> list[str]:
        """
        Get list of all supported timeframes, shortest first.

        Example:
            >>> Factory.get_supported_timeframes()
            ['1m', '3m', '5m', '15m', '30m', '60m', '90m', '1d', '1wk']
        """
        from .schemas import TimeframeConfig

        metadata = TimeframeConfig.TIMEFRAME_METADATA
        return sorted(metadata, key=lambda tf: metadata[tf]["seconds"])

    @staticmethod
    def get_timeframe_metadata(timeframe: str) -> dict[str, Any]:
        """
        Get metadata for a timeframe: category, seconds, description, weekly flag and Polars duration.

        Raises:
            ValueError: If timeframe is not supported
        """
        metadata = Factory._get_cached_timeframe_metadata(timeframe)
        return metadata.copy()

    @staticmethod
    @lru_cache(maxsize=32)
    def _get_cached_timeframe_metadata(timeframe: str) -> dict[str, Any]:
        from .schemas import TimeframeConfig

        if not TimeframeConfig.validate_timeframe(timeframe):
            supported = Factory.get_supported_timeframes()
            raise ValueError(f"Unsupported timeframe: '{timeframe}'. Supported timeframes are: {supported}")

        return TimeframeConfig.TIMEFRAME_METADATA[timeframe]

    @staticmethod
    def validate_timeframe_format(timeframe: str) -> bool:
        """True if the timeframe is supported."""
        from .schemas import TimeframeConfig

        return TimeframeConfig.validate_timeframe(timeframe)
