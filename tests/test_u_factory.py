"""
Unit tests for the Factory component creation methods.
"""

import pytest

from basecandle.aggregation import Aggregation
from basecandle.factory import Factory
from basecandle.indicators import Indicators
from basecandle.schemas import AggregationConfig, EngineConfig, FactoryConfig, IndicatorsConfig
from basecandle.signals import SignalEngine

from .utils.config_helpers import create_aggregation_config, create_engine_config, create_indicators_config


@pytest.mark.unit
class TestFactoryCreateComponents:
    """Test cases for individual component creation."""

    def test_create_indicators_default(self):
        indicators = Factory.create_indicators()

        assert isinstance(indicators, Indicators)
        assert indicators.config == IndicatorsConfig()

    def test_create_indicators_custom(self):
        indicators = Factory.create_indicators(create_indicators_config(rsi_period=10))

        assert indicators.config.rsi_period == 10

    def test_create_aggregation(self):
        aggregation = Factory.create_aggregation(create_aggregation_config(timezone="Asia/Seoul"))

        assert isinstance(aggregation, Aggregation)
        assert aggregation.timezone == "Asia/Seoul"
        assert aggregation.target_timeframe == "1wk"

    def test_create_engine_default(self):
        engine = Factory.create_engine()

        assert isinstance(engine, SignalEngine)
        assert engine.config.timeframe == "1d"

    def test_create_engine_custom(self):
        config = create_engine_config(timeframe="1wk", cooldown_bars=5, indicators=create_indicators_config(rsi_period=9))

        engine = Factory.create_engine(config)

        assert engine.config.cooldown_bars == 5
        assert engine.indicators.config.rsi_period == 9


@pytest.mark.unit
class TestFactoryCreateAll:
    """Test cases for creating the full component set."""

    def test_daily_includes_weekly_aggregation(self):
        components = Factory.create_all()

        assert set(components) == {"engine", "indicators", "aggregation"}
        assert isinstance(components["engine"], SignalEngine)
        assert isinstance(components["indicators"], Indicators)
        assert components["aggregation"].target_timeframe == "1wk"

    def test_no_major_timeframe(self):
        components = Factory.create_all(FactoryConfig(engine=EngineConfig(timeframe="1wk")))

        assert components["aggregation"] is None

    def test_explicit_aggregation(self):
        config = FactoryConfig(
            engine=EngineConfig(timeframe="60m"),
            aggregation=AggregationConfig(target_timeframe="1d", timezone="US/Eastern"),
        )

        components = Factory.create_all(config)

        assert components["aggregation"].target_timeframe == "1d"
        assert components["aggregation"].timezone == "US/Eastern"

    def test_indicators_share_engine_config(self):
        config = FactoryConfig(engine=create_engine_config(indicators=create_indicators_config(atr_period=10)))

        components = Factory.create_all(config)

        assert components["indicators"].config.atr_period == 10
        assert components["engine"].indicators.config.atr_period == 10


@pytest.mark.unit
class TestFactoryTimeframes:
    """Test cases for timeframe lookups."""

    def test_supported_timeframes_shortest_first(self):
        assert Factory.get_supported_timeframes() == ["1m", "3m", "5m", "15m", "30m", "60m", "90m", "1d", "1wk"]

    def test_metadata(self):
        metadata = Factory.get_timeframe_metadata("1wk")

        assert metadata["seconds"] == 604800
        assert metadata["weekly"] is True
        assert metadata["polars_format"] == "1w"

    def test_metadata_is_a_copy(self):
        metadata = Factory.get_timeframe_metadata("1d")
        metadata["seconds"] = 0

        assert Factory.get_timeframe_metadata("1d")["seconds"] == 86400

    def test_unsupported_timeframe(self):
        with pytest.raises(ValueError, match="Unsupported timeframe: '2h'"):
            Factory.get_timeframe_metadata("2h")

    @pytest.mark.parametrize("timeframe,expected", [("1d", True), ("15m", True), ("1h", False), ("", False)])
    def test_validate_timeframe_format(self, timeframe, expected):
        assert Factory.validate_timeframe_format(timeframe) is expected
