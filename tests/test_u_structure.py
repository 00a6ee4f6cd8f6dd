"""
Unit tests for the structural analyzers.

Covers the base candle scan, the reference node, reference lines, market analysis
and the N/E wave targets.
"""

import polars as pl
import pytest

from basecandle.structure import (
    LineType,
    MarketAnalysis,
    OverlapStrength,
    ReferenceNode,
    VolumeTrend,
    analyze_market,
    calculate_e_wave_target,
    calculate_n_wave_target,
    calculate_reference_node,
    check_target_overlap,
    find_reference_lines,
    find_standard_bar,
)

from .utils import create_bars, create_base_candle_data, create_flat_data, create_rising_data, to_bar_series


def _quiet(count: int, price: float = 100.0, volume: float = 1000) -> list[tuple]:
    return [(price, price + 0.5, price - 0.5, price, volume) for _ in range(count)]


@pytest.fixture
def base_candle_bars():
    return to_bar_series(create_base_candle_data())


@pytest.mark.unit
class TestFindStandardBar:
    """Test cases for the base candle scan."""

    def test_finds_high_volume_breakout(self, base_candle_bars):
        candle = find_standard_bar(base_candle_bars, base_candle_bars.indicators)

        assert candle is not None
        assert candle.index == 15
        assert candle.is_second_base is False
        assert candle.first_base is None
        assert candle.is_gap_up is False
        assert candle.vol_multiplier == pytest.approx(3.0)
        assert candle.waistline == pytest.approx((104.0 + 99.8) / 2)

    def test_without_moving_averages(self, base_candle_bars):
        candle = find_standard_bar(base_candle_bars)

        assert candle is not None
        assert candle.index == 15

    def test_respects_end_index(self, base_candle_bars):
        assert find_standard_bar(base_candle_bars, base_candle_bars.indicators, end=14) is None

    def test_requires_twenty_bars(self, base_candle_bars):
        assert find_standard_bar(base_candle_bars, end=18) is None
        assert find_standard_bar(base_candle_bars, end=19) is not None

    def test_flat_series_has_no_base(self):
        bars = to_bar_series(create_flat_data(periods=60))

        assert find_standard_bar(bars, bars.indicators) is None

    def test_bearish_moving_averages_reject_candidate(self, base_candle_bars):
        falling = {
            "sma5": [100.0 - 0.1 * i for i in range(len(base_candle_bars))],
            "sma20": [110.0] * len(base_candle_bars),
        }

        assert find_standard_bar(base_candle_bars, falling) is None

    def test_gap_up_uses_lower_threshold(self):
        rows = _quiet(20)
        rows.append((101.0, 103.0, 100.8, 102.5, 2200))
        bars = to_bar_series(create_bars(rows), with_indicators=False)

        candle = find_standard_bar(bars)

        assert candle is not None
        assert candle.is_gap_up is True
        assert candle.vol_multiplier == pytest.approx(2.2)

    def test_second_base(self):
        rows = _quiet(10)
        rows.append((100.0, 103.0, 99.8, 102.5, 3000))
        rows.extend([(102.4, 102.8, 102.0, 102.3, 500)] * 4)
        rows.append((102.3, 104.0, 102.2, 103.8, 3000))
        rows.extend(_quiet(6, price=103.8, volume=800))
        bars = to_bar_series(create_bars(rows), with_indicators=False)

        candle = find_standard_bar(bars)

        assert candle is not None
        assert candle.index == 15
        assert candle.is_second_base is True
        assert candle.first_base is not None
        assert candle.first_base.index == 10


@pytest.mark.unit
class TestReferenceNode:
    """Test cases for the markup leg measurement."""

    def test_spans_base_to_breakout(self, base_candle_bars):
        candle = find_standard_bar(base_candle_bars, base_candle_bars.indicators)
        node = calculate_reference_node(base_candle_bars, candle)

        assert node is not None
        assert node.start_idx == 15
        assert node.end_idx == 21
        assert node.node_high == 106.0
        assert node.node_low == 99.8
        assert node.node_low <= node.waistline <= node.node_high
        assert node.node_height == pytest.approx(6.2)

    def test_end_index_limits_span(self, base_candle_bars):
        candle = find_standard_bar(base_candle_bars)
        node = calculate_reference_node(base_candle_bars, candle, end=20)

        assert node.end_idx == 15
        assert node.node_high == 104.0

    def test_stops_after_three_declining_closes(self):
        rows = _quiet(15)
        rows.extend(
            [
                (100.0, 104.0, 99.8, 103.5, 3000),
                (103.5, 105.0, 103.4, 104.8, 500),
                (104.8, 104.9, 104.3, 104.5, 500),
                (104.5, 104.6, 104.0, 104.2, 500),
                (104.2, 104.3, 103.7, 103.9, 500),
                (103.9, 110.0, 103.8, 109.5, 500),
            ]
        )
        bars = to_bar_series(create_bars(rows), with_indicators=False)
        candle = find_standard_bar(bars)

        node = calculate_reference_node(bars, candle)

        assert candle.index == 15
        assert node.end_idx == 16
        assert node.node_high == 105.0

    def test_no_base_candle(self, base_candle_bars):
        assert calculate_reference_node(base_candle_bars, None) is None


@pytest.mark.unit
class TestReferenceLines:
    def test_clusters_high_volume_extremes(self, base_candle_bars):
        lines = find_reference_lines(base_candle_bars)

        assert len(lines) == 2
        assert lines[0].price == 103.5
        assert lines[0].type == LineType.SUPPORT
        assert lines[0].hits == 2
        assert lines[1].price == 99.8
        assert lines[1].hits == 1
        assert lines[0].weight == pytest.approx(lines[1].weight * 1.8)

    def test_recency_weight(self, base_candle_bars):
        lines = find_reference_lines(base_candle_bars)

        assert lines[1].weight == pytest.approx((0.5 + 0.5 * 15 / 22) * 3.0)

    def test_short_history(self, base_candle_bars):
        assert find_reference_lines(base_candle_bars, end=18) == []

    def test_zero_volume_history_skipped(self):
        rows = _quiet(25, volume=0)
        rows[24] = (100.0, 101.0, 99.5, 100.8, 5000)
        bars = to_bar_series(create_bars(rows), with_indicators=False)

        assert find_reference_lines(bars) == []


@pytest.mark.unit
class TestAnalyzeMarket:
    """Test cases for moving-average and volume state."""

    @pytest.fixture
    def rising_bars(self):
        return to_bar_series(create_rising_data(periods=300))

    def test_perfect_order_on_rising_series(self, rising_bars):
        for i in range(120, 300):
            assert analyze_market(rising_bars, rising_bars.indicators, end=i).perfect_order, i

    def test_defaults_before_index_120(self, rising_bars):
        assert analyze_market(rising_bars, rising_bars.indicators, end=119) == MarketAnalysis()

    def test_rising_series_state(self, rising_bars):
        market = analyze_market(rising_bars, rising_bars.indicators, end=200)

        assert market.volume_trend == VolumeTrend.NEUTRAL
        assert market.convergence is False
        assert market.sma5_turning is False
        assert market.long_ma_flattening is True

    @pytest.mark.parametrize(
        "volume,expected",
        [(5000, VolumeTrend.VOLUME_CLIMAX), (2000, VolumeTrend.BULLISH_CONFIRMED), (1400, VolumeTrend.NEUTRAL)],
    )
    def test_volume_trend(self, volume, expected):
        df = create_rising_data(periods=160)
        volumes = [1000] * 160
        volumes[150] = volume
        bars = to_bar_series(df.with_columns(pl.Series("volume", volumes)))

        assert analyze_market(bars, bars.indicators, end=150).volume_trend == expected

    def test_flat_series_converges(self):
        bars = to_bar_series(create_flat_data(periods=260))
        market = analyze_market(bars, bars.indicators, end=250)

        assert market.convergence is True
        assert market.perfect_order is False


@pytest.mark.unit
class TestWaveTargets:
    @pytest.fixture
    def node(self):
        return ReferenceNode(start_idx=0, end_idx=5, node_high=110.0, node_low=100.0, waistline=104.0)

    def test_n_wave(self, node):
        assert calculate_n_wave_target(node, 105.0) == 115.0

    def test_e_wave(self, node):
        assert calculate_e_wave_target(node) == 120.0

    def test_targets_without_node(self):
        assert calculate_n_wave_target(None, 105.0) is None
        assert calculate_e_wave_target(None) is None

    @pytest.mark.parametrize(
        "n_target,e_target,overlap,strength",
        [
            (100.0, 100.5, True, OverlapStrength.VERY_STRONG),
            (100.0, 102.0, True, OverlapStrength.STRONG),
            (115.0, 120.0, False, OverlapStrength.WEAK),
        ],
    )
    def test_overlap_strength(self, n_target, e_target, overlap, strength):
        result = check_target_overlap(n_target, e_target)

        assert result.overlap is overlap
        assert result.strength == strength
        assert result.convergence_price == round((n_target + e_target) / 2, 2)

    def test_overlap_missing_target(self):
        result = check_target_overlap(None, 120.0)

        assert result.overlap is False
        assert result.strength is None
