"""
Unit tests for the walk-forward signal engine.
"""

import logging

import polars as pl
import pytest

import basecandle.signals as signals
from basecandle.backtest import BacktestResult
from basecandle.patterns import TrendStatus
from basecandle.schemas import EngineConfig
from basecandle.signals import (
    MARKER_COLUMN_TYPES,
    Direction,
    EngineResult,
    MarketSnapshot,
    SignalEngine,
    SignalMarker,
    generate_all_signals,
    major_trend_status,
)
from basecandle.strategy import Action, Decision, Factor, Reason, ReasonCode

from .utils import create_bars, create_base_candle_data, create_flat_data, create_rising_data


def create_falling_data(periods: int = 60) -> pl.DataFrame:
    return create_bars([(400.5 - i, 401.0 - i, 399.5 - i, 400.0 - i, 1000) for i in range(periods)])


def fixed_decision(action: Action) -> Decision:
    return Decision(
        action=action,
        reason=Reason(code=ReasonCode.STRONG_CONFLUENCE, factors=[Factor.UPTREND_EMA200]),
        target_price=140.0,
        target_price2=150.0,
        stop_loss=120.0,
        pattern="CONFLUENCE_BUY",
        score=65,
        bullish_factors=[Factor.UPTREND_EMA200],
    )


@pytest.fixture
def engine():
    return SignalEngine()


@pytest.mark.unit
class TestSignalMarker:
    def test_from_decision(self):
        decision = fixed_decision(Action.BUY)

        marker = SignalMarker.from_decision(decision, "2023-01-21", 20, Direction.BUY)

        assert marker.index == 20
        assert marker.direction == Direction.BUY
        assert marker.target_price == 140.0
        assert marker.target_price2 == 150.0
        assert marker.stop_loss == 120.0
        assert marker.pattern == "CONFLUENCE_BUY"
        assert marker.score == 65
        assert marker.bullish_factors == [Factor.UPTREND_EMA200]
        assert marker.reason.code == ReasonCode.STRONG_CONFLUENCE

    def test_factor_lists_are_copied(self):
        decision = fixed_decision(Action.BUY)
        marker = SignalMarker.from_decision(decision, "2023-01-21", 20, Direction.BUY)

        decision.bullish_factors.append(Factor.RSI_BULLISH)

        assert marker.bullish_factors == [Factor.UPTREND_EMA200]


@pytest.mark.unit
class TestEngineResult:
    def test_empty_defaults(self):
        result = EngineResult()

        assert result.markers == []
        assert result.backtest == BacktestResult()
        assert result.reference_lines == []

    def test_empty_markers_frame(self):
        frame = EngineResult().markers_frame()

        assert len(frame) == 0
        assert frame.columns[0] == "timestamp"
        for name, dtype in MARKER_COLUMN_TYPES.items():
            assert frame.schema[name] == dtype

    def test_markers_frame_values(self):
        marker = SignalMarker.from_decision(fixed_decision(Action.BUY), "2023-01-21", 20, Direction.BUY)

        row = EngineResult(markers=[marker]).markers_frame().row(0, named=True)

        assert row["index"] == 20
        assert row["direction"] == "BUY"
        assert row["reason"] == "STRONG_CONFLUENCE"
        assert row["bullish_factors"] == ["UPTREND_EMA200"]
        assert row["bearish_factors"] == []


@pytest.mark.unit
class TestRun:
    """Test cases for the walk-forward run."""

    def test_quiet_series_has_no_markers(self, engine):
        result = engine.run(create_flat_data(60))

        assert result.markers == []
        assert result.backtest == BacktestResult()

    def test_process_returns_empty_frame(self, engine):
        frame = engine.process(create_flat_data(60))

        assert isinstance(frame, pl.DataFrame)
        assert len(frame) == 0
        assert "direction" in frame.columns

    def test_insufficient_history(self, engine, caplog):
        with caplog.at_level(logging.WARNING):
            result = engine.run(create_flat_data(49))

        assert result == EngineResult()
        assert "Insufficient history" in caplog.text

    def test_min_bars_configurable(self, monkeypatch):
        calls = []
        monkeypatch.setattr(signals, "evaluate_bar", lambda bars, i, *args: calls.append(i) or fixed_decision(Action.WAIT))

        SignalEngine(EngineConfig(min_bars=30)).run(create_flat_data(30))

        assert calls == list(range(20, 30))

    def test_invalid_input(self, engine):
        with pytest.raises(ValueError, match="Missing required columns"):
            engine.run(pl.DataFrame({"close": [1.0, 2.0]}))

    def test_cooldown_per_direction(self, engine, monkeypatch):
        monkeypatch.setattr(signals, "evaluate_bar", lambda bars, i, *args: fixed_decision(Action.BUY))

        result = engine.run(create_flat_data(60))

        assert [marker.index for marker in result.markers] == [20, 30, 40, 50]
        assert all(marker.direction == Direction.BUY for marker in result.markers)

    def test_directions_debounced_independently(self, engine, monkeypatch):
        def alternate(bars, i, *args):
            return fixed_decision(Action.BUY if i % 2 == 0 else Action.SELL)

        monkeypatch.setattr(signals, "evaluate_bar", alternate)

        markers = engine.run(create_flat_data(60)).markers

        buys = [marker.index for marker in markers if marker.direction == Direction.BUY]
        sells = [marker.index for marker in markers if marker.direction == Direction.SELL]
        assert buys == [20, 30, 40, 50]
        assert sells == [21, 31, 41, 51]

    def test_hold_and_wait_emit_nothing(self, engine, monkeypatch):
        monkeypatch.setattr(signals, "evaluate_bar", lambda bars, i, *args: fixed_decision(Action.HOLD))

        assert engine.run(create_flat_data(60)).markers == []

    def test_zero_cooldown(self, monkeypatch):
        monkeypatch.setattr(signals, "evaluate_bar", lambda bars, i, *args: fixed_decision(Action.BUY))

        markers = SignalEngine(EngineConfig(cooldown_bars=0)).run(create_flat_data(60)).markers

        assert len(markers) == 40

    def test_markers_carry_bar_timestamps(self, engine, monkeypatch):
        monkeypatch.setattr(signals, "evaluate_bar", lambda bars, i, *args: fixed_decision(Action.BUY))
        df = create_flat_data(60)

        markers = engine.run(df).markers

        assert markers[0].timestamp == df["timestamp"][20]

    def test_trend_status_passed_through(self, engine, monkeypatch):
        seen = set()

        def record(bars, i, trend_status, config):
            seen.add(trend_status)
            return fixed_decision(Action.WAIT)

        monkeypatch.setattr(signals, "evaluate_bar", record)

        engine.run(create_flat_data(60), mtf_data=create_rising_data(60))

        assert seen == {TrendStatus.BULLISH}

    def test_latest_trend_status_applies_to_every_bar(self, engine, monkeypatch):
        # Forty rising weekly bars, then a thirty-bar slide that ends below the trend EMA
        rising = [(99.5 + i, 100.5 + i, 99.0 + i, 100.0 + i, 1000) for i in range(40)]
        falling = [(c + 0.5, c + 1.0, c - 1.0, c, 1000) for c in (139.0 - 3 * (k + 1) for k in range(30))]
        mtf = create_bars(rising + falling, freq_minutes=10080)
        seen = {}

        def record(bars, i, trend_status, config):
            seen[i] = trend_status
            return fixed_decision(Action.WAIT)

        monkeypatch.setattr(signals, "evaluate_bar", record)

        engine.run(create_flat_data(60), mtf_data=mtf)

        assert engine.major_trend_status(mtf.head(40)) is None
        assert engine.major_trend_status(mtf) == TrendStatus.BEARISH
        assert seen[20] == TrendStatus.BEARISH
        assert set(seen.values()) == {TrendStatus.BEARISH}


@pytest.mark.unit
class TestMajorTrendStatus:
    def test_no_series(self, engine):
        assert engine.major_trend_status(None) is None

    def test_short_series_inactive(self, engine, caplog):
        with caplog.at_level(logging.INFO):
            assert engine.major_trend_status(create_rising_data(50)) is None
        assert "trend filter inactive" in caplog.text

    def test_bullish(self, engine):
        assert engine.major_trend_status(create_rising_data(51)) == TrendStatus.BULLISH

    def test_bearish(self, engine):
        assert engine.major_trend_status(create_falling_data(60)) == TrendStatus.BEARISH

    def test_threshold_configurable(self):
        engine = SignalEngine(EngineConfig(mtf_min_bars=10))

        assert engine.major_trend_status(create_rising_data(20)) == TrendStatus.BULLISH

    def test_module_function(self):
        assert major_trend_status(create_falling_data(60)) == TrendStatus.BEARISH
        assert major_trend_status(None) is None


@pytest.mark.unit
class TestAnalyze:
    """Test cases for single-point analysis of the latest bar."""

    def test_snapshot_structure(self, engine):
        snapshot = engine.analyze(create_base_candle_data())

        assert isinstance(snapshot, MarketSnapshot)
        assert snapshot.standard_bar.index == 15
        assert snapshot.node.start_idx == 15
        assert snapshot.node.end_idx == 21
        assert snapshot.trend_status is None

    def test_wave_targets(self, engine):
        snapshot = engine.analyze(create_base_candle_data())

        # Node 99.8..106.0; the only bar since the node end has low 103.4
        assert snapshot.n_wave_target == pytest.approx(109.6)
        assert snapshot.e_wave_target == pytest.approx(112.2)
        assert snapshot.target_overlap.overlap is True

    def test_evaluate_matches_analyze(self, engine):
        df = create_base_candle_data()

        decision = engine.evaluate(df)
        snapshot = engine.analyze(df)

        assert decision.action == snapshot.decision.action
        assert decision.score == snapshot.decision.score
        assert decision.bullish_factors == snapshot.decision.bullish_factors

    def test_decision_has_report(self, engine):
        decision = engine.evaluate(create_base_candle_data())

        assert decision.report is not None
        assert 10 <= decision.score <= 99

    def test_empty_input(self, engine):
        empty = create_flat_data(1).clear()

        with pytest.raises(ValueError):
            engine.analyze(empty)

    def test_no_base_candle(self, engine):
        snapshot = engine.analyze(create_flat_data(30))

        assert snapshot.standard_bar is None
        assert snapshot.node is None
        assert snapshot.n_wave_target is None
        assert snapshot.target_overlap.overlap is False


@pytest.mark.unit
class TestGenerateAllSignals:
    def test_timeframe_applied(self, monkeypatch):
        seen = set()

        def record(bars, i, trend_status, config):
            seen.add(config.timeframe)
            return fixed_decision(Action.WAIT)

        monkeypatch.setattr(signals, "evaluate_bar", record)

        generate_all_signals(create_flat_data(60), timeframe="1wk")

        assert seen == {"1wk"}

    def test_config_overrides_timeframe(self, monkeypatch):
        seen = set()

        def record(bars, i, trend_status, config):
            seen.add(config.timeframe)
            return fixed_decision(Action.WAIT)

        monkeypatch.setattr(signals, "evaluate_bar", record)

        generate_all_signals(create_flat_data(60), timeframe="1wk", config=EngineConfig(timeframe="60m"))

        assert seen == {"60m"}

    def test_returns_engine_result(self):
        result = generate_all_signals(create_flat_data(60))

        assert isinstance(result, EngineResult)
        assert result.markers == []
