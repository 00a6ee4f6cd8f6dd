"""
Integration tests for basecandle.

Tests end-to-end workflows: causality of the walk-forward decisions, indicator
invariants on realistic data and the full Factory pipeline with a major timeframe.
"""

import pytest
from polars import DataFrame

from basecandle import EngineResult, Factory, SignalEngine, evaluate_bar
from basecandle.schemas import FactoryConfig
from basecandle.signals import Direction

from .utils import create_ohlc_data, create_rising_data, to_bar_series


@pytest.fixture(scope="module")
def data():
    return create_ohlc_data(200)


@pytest.fixture(scope="module")
def full_bars(data):
    return to_bar_series(data)


@pytest.fixture(scope="module")
def analyzed(data):
    return Factory.create_indicators().process(data)


@pytest.fixture(scope="module")
def result():
    return SignalEngine().run(create_ohlc_data(300))


@pytest.mark.integration
class TestCausality:
    """Decisions from the full history must match decisions from the truncated history."""

    @pytest.mark.parametrize("i", [25, 60, 100, 150, 199])
    def test_full_history_matches_prefix(self, data, full_bars, i):
        from_full = evaluate_bar(full_bars, i)
        from_prefix = SignalEngine().evaluate(data.head(i + 1))

        assert from_full.action == from_prefix.action
        assert from_full.score == from_prefix.score
        assert from_full.bullish_factors == from_prefix.bullish_factors
        assert from_full.bearish_factors == from_prefix.bearish_factors
        assert from_full.target_price == from_prefix.target_price
        assert from_full.stop_loss == from_prefix.stop_loss

    def test_appending_bars_keeps_existing_indicators(self, data):
        indicators = Factory.create_indicators()

        short = indicators.process(data.head(120))
        full = indicators.process(data).head(120)

        for name in ("sma20", "ema200", "rsi", "atr", "macd_histogram", "chandelier_stop"):
            assert short[name].to_list() == full[name].to_list()


@pytest.mark.integration
class TestIndicatorInvariants:
    def test_length_preserved(self, analyzed):
        assert len(analyzed) == 200

    def test_rsi_bounds(self, analyzed):
        rsi = analyzed["rsi"].drop_nulls()

        assert len(rsi) > 0
        assert rsi.min() >= 0
        assert rsi.max() <= 100

    def test_bollinger_ordering(self, analyzed):
        bands = analyzed.select(["bb_lower", "bb_middle", "bb_upper"]).drop_nulls()

        assert len(bands) > 0
        assert (bands["bb_lower"] <= bands["bb_middle"]).all()
        assert (bands["bb_middle"] <= bands["bb_upper"]).all()


@pytest.mark.integration
class TestWalkForward:
    def test_markers_after_warmup_in_order(self, result):
        indices = [marker.index for marker in result.markers]

        assert all(index >= 20 for index in indices)
        assert indices == sorted(indices)

    def test_cooldown_spacing_per_direction(self, result):
        for direction in Direction:
            indices = [marker.index for marker in result.markers if marker.direction == direction]
            assert all(later - earlier >= 10 for earlier, later in zip(indices, indices[1:]))

    def test_backtest_covers_buy_markers_only(self, result):
        buys = [marker for marker in result.markers if marker.direction == Direction.BUY]

        assert result.backtest.total <= min(len(buys), 50)
        assert result.backtest.wins + result.backtest.losses == result.backtest.total

    def test_buy_levels_bracket_entry(self, result):
        bars = to_bar_series(create_ohlc_data(300), with_indicators=False)

        for marker in result.markers:
            if marker.direction == Direction.BUY:
                assert marker.target_price > bars.close[marker.index]
                assert marker.target_price2 > marker.target_price

    def test_reference_lines_sorted_by_weight(self, result):
        weights = [line.weight for line in result.reference_lines]

        assert len(result.reference_lines) <= 5
        assert weights == sorted(weights, reverse=True)


@pytest.mark.integration
class TestFactoryPipeline:
    """Integration tests for the complete Factory workflow."""

    def test_end_to_end_with_major_timeframe(self):
        daily = create_ohlc_data(400, symbol="AAPL")
        pipeline = Factory.create_all(FactoryConfig())

        weekly = pipeline["aggregation"].process(daily)

        assert isinstance(weekly, DataFrame)
        assert len(weekly) == 58
        assert weekly["symbol"][0] == "AAPL"

        result = pipeline["engine"].run(daily, mtf_data=weekly)

        assert isinstance(result, EngineResult)
        assert pipeline["engine"].major_trend_status(weekly) is not None

    def test_pandas_input(self):
        data = create_ohlc_data(120)
        engine = Factory.create_engine()

        from_pandas = engine.run(data.to_pandas())
        from_polars = engine.run(data)

        assert [m.index for m in from_pandas.markers] == [m.index for m in from_polars.markers]
        assert from_pandas.backtest == from_polars.backtest

    def test_rising_market_has_no_sell_markers(self):
        result = Factory.create_engine().run(create_rising_data(300))

        assert all(marker.direction == Direction.BUY for marker in result.markers)
