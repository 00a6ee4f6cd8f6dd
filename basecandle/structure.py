"""
Structural analyzers: base candle, reference node, reference lines and market state.

Every analyzer reads a ``BarSeries`` up to an explicit ``end`` index (inclusive) and
never looks past it, so the walk-forward loop can evaluate bar ``i`` without copying
the prefix ``[0..i]``.
"""

from dataclasses import dataclass, replace
from enum import Enum
from math import floor, inf

from .base import BarSeries, greater

# Base candle scan
MIN_BARS = 20
LOOKBACK_BARS = 90
VOLUME_WINDOW = 10
BASE_VOLUME_MULTIPLIER = 2.5
GAP_UP_VOLUME_MULTIPLIER = 2.0
SECOND_BASE_MIN_GAP = 2
SECOND_BASE_VOLUME_DECAY = 0.5

# Reference node
NODE_BINS = 20
NODE_VOLUME_WEIGHT = 5
NODE_DECLINE_OFFSET = 3

# Reference lines
LINE_VOLUME_MULTIPLIER = 2.0
LINE_MERGE_DISTANCE = 0.03
LINE_CLOSE_WEIGHT = 0.8
MAX_REFERENCE_LINES = 5

# Market analysis
MARKET_MIN_INDEX = 120
VOLUME_CLIMAX_MULTIPLIER = 3.0
VOLUME_CONFIRMED_MULTIPLIER = 1.5
CONVERGENCE_SPREAD = 0.03
FLATTENING_OFFSET = 5

# Wave targets
OVERLAP_DISTANCE = 0.03
VERY_STRONG_OVERLAP_DISTANCE = 0.01


@dataclass(frozen=True)
class BaseCandle:
    """High-volume bullish bar likely to start a markup move."""

    index: int
    timestamp: object
    open: float
    high: float
    low: float
    close: float
    volume: float
    vol_multiplier: float
    is_gap_up: bool
    is_second_base: bool = False
    first_base: "BaseCandle | None" = None

    @property
    def top(self) -> float:
        return self.high

    @property
    def bottom(self) -> float:
        return self.low

    @property
    def waistline(self) -> float:
        return (self.high + self.low) / 2


@dataclass(frozen=True)
class ReferenceNode:
    """Markup leg from a base candle to its swing high."""

    start_idx: int
    end_idx: int
    node_high: float
    node_low: float
    waistline: float

    @property
    def node_height(self) -> float:
        return self.node_high - self.node_low


class LineType(Enum):
    """Reference line role."""

    SUPPORT = "support"
    RESISTANCE = "resistance"


@dataclass
class ReferenceLine:
    """Merged price level from high-volume bar extremes."""

    price: float
    type: LineType
    weight: float
    hits: int = 1


class VolumeTrend(Enum):
    """Current volume relative to the trailing 10-bar average."""

    NEUTRAL = "neutral"
    BULLISH_CONFIRMED = "bullish_confirmed"
    VOLUME_CLIMAX = "volume_climax"


@dataclass(frozen=True)
class MarketAnalysis:
    """Moving-average and volume state at one bar."""

    perfect_order: bool = False
    volume_trend: VolumeTrend = VolumeTrend.NEUTRAL
    convergence: bool = False
    sma5_turning: bool = False
    long_ma_flattening: bool = False


class OverlapStrength(Enum):
    """How tightly the N-wave and E-wave targets agree."""

    VERY_STRONG = "VERY_STRONG"
    STRONG = "STRONG"
    WEAK = "WEAK"


@dataclass(frozen=True)
class TargetOverlap:
    """Agreement between the N-wave and E-wave targets."""

    overlap: bool
    convergence_price: float | None = None
    strength: OverlapStrength | None = None


def _average(values: list[float]) -> float:
    return sum(values) / len(values)


def _series_value(moving_averages: dict[str, list] | None, name: str, index: int) -> float | None:
    if not moving_averages:
        return None
    values = moving_averages.get(name)
    if values is None or index < 0 or index >= len(values):
        return None
    return values[index]


def _base_candle_at(bars: BarSeries, moving_averages: dict[str, list] | None, i: int) -> BaseCandle | None:
    if bars.close[i] <= bars.open[i]:
        return None

    is_gap_up = i > 0 and bars.open[i] > bars.high[i - 1]

    window = bars.volume[max(0, i - VOLUME_WINDOW) : i]
    if not window:
        return None
    avg_volume = _average(window)
    if avg_volume > 0:
        vol_multiplier = bars.volume[i] / avg_volume
    else:
        vol_multiplier = inf if bars.volume[i] > 0 else 0.0

    threshold = GAP_UP_VOLUME_MULTIPLIER if is_gap_up else BASE_VOLUME_MULTIPLIER
    if vol_multiplier < threshold:
        return None

    if moving_averages and moving_averages.get("sma5") is not None and moving_averages.get("sma20") is not None:
        s5 = _series_value(moving_averages, "sma5", i)
        s10 = _series_value(moving_averages, "sma10", i)
        s20 = _series_value(moving_averages, "sma20", i)
        aligned = greater(s5, s20) and (s10 is None or greater(s5, s10))
        turning = i > 0 and greater(s5, _series_value(moving_averages, "sma5", i - 1))
        if not aligned and not turning:
            return None

    is_breakout = bars.close[i] > bars.high[i - 1] if i > 0 else True
    if not is_breakout and not is_gap_up:
        return None

    return BaseCandle(
        index=i,
        timestamp=bars.timestamp[i],
        open=bars.open[i],
        high=bars.high[i],
        low=bars.low[i],
        close=bars.close[i],
        volume=bars.volume[i],
        vol_multiplier=vol_multiplier,
        is_gap_up=is_gap_up,
    )


def find_standard_bar(
    bars: BarSeries, moving_averages: dict[str, list] | None = None, end: int | None = None
) -> BaseCandle | None:
    """
    Find the dominant base candle in the trailing 90 bars.

    A candidate is a bullish bar with volume at least 2.5x its trailing 10-bar average
    (2.0x on a gap-up over the prior high), bullishly aligned or turning short moving
    averages (checked only when ``sma5`` and ``sma20`` are supplied), and a close above
    the prior high unless it gapped. Adjacent candidates separated by at least two
    quiet bars (average volume under half of the older candidate's volume) where the
    newer high reaches the older high form a two-stage base.

    Args:
        bars: Bar history
        moving_averages: Mapping of ``sma5``/``sma10``/``sma20`` lists aligned with ``bars``
        end: Last index to consider (defaults to the last bar)

    Returns:
        The newer candidate of the first two-stage pair (flagged, with ``first_base``),
        else the most recent candidate, or None with fewer than 20 bars or no candidate
    """
    end = bars.last_index(end)
    count = end + 1
    if count < MIN_BARS:
        return None

    start = count - min(count, LOOKBACK_BARS)
    candidates = []
    for i in range(end, start - 1, -1):
        candle = _base_candle_at(bars, moving_averages, i)
        if candle is not None:
            candidates.append(candle)

    if not candidates:
        return None

    for second, first in zip(candidates, candidates[1:]):
        gap_start = first.index + 1
        gap_end = second.index
        if gap_end - gap_start < SECOND_BASE_MIN_GAP:
            continue

        gap_volume = _average(bars.volume[gap_start:gap_end])
        if gap_volume < first.volume * SECOND_BASE_VOLUME_DECAY and second.high >= first.high:
            return replace(second, is_second_base=True, first_base=first)

    return candidates[0]


def calculate_reference_node(
    bars: BarSeries, standard_bar: BaseCandle | None, end: int | None = None
) -> ReferenceNode | None:
    """
    Measure the markup leg that starts at ``standard_bar``.

    The span runs from the base candle to the running peak high and stops once three
    consecutive closes decline at least three bars after the peak. The waistline is the
    midpoint of the densest of 20 price bins, where each bar adds one unit at each OHLC
    bin plus ``volume / base volume * 5`` at its close bin.

    Returns:
        ReferenceNode, or None without a base candle or when the span has zero height
    """
    if standard_bar is None:
        return None

    end = bars.last_index(end)
    start = standard_bar.index
    peak_idx = start
    peak_high = bars.high[start]

    for i in range(start + 1, end + 1):
        if bars.high[i] > peak_high:
            peak_high = bars.high[i]
            peak_idx = i
        if i >= peak_idx + NODE_DECLINE_OFFSET:
            if bars.close[i] < bars.close[i - 1] < bars.close[i - 2]:
                break

    node_low = min(bars.low[start : peak_idx + 1])
    price_range = peak_high - node_low
    if price_range == 0:
        return None

    bin_size = price_range / NODE_BINS
    density = [0.0] * NODE_BINS

    def to_bin(price: float) -> int:
        return min(NODE_BINS - 1, floor((price - node_low) / bin_size))

    for i in range(start, peak_idx + 1):
        for price in (bars.open[i], bars.close[i], bars.high[i], bars.low[i]):
            density[to_bin(price)] += 1
        if standard_bar.volume > 0:
            density[to_bin(bars.close[i])] += bars.volume[i] / standard_bar.volume * NODE_VOLUME_WEIGHT

    densest = density.index(max(density))
    return ReferenceNode(
        start_idx=start,
        end_idx=peak_idx,
        node_high=peak_high,
        node_low=node_low,
        waistline=node_low + (densest + 0.5) * bin_size,
    )


def find_reference_lines(bars: BarSeries, end: int | None = None) -> list[ReferenceLine]:
    """
    Cluster high-volume bar extremes into support/resistance levels.

    Bars in the trailing 90 with volume at least 2x their trailing 10-bar average add
    their high (resistance), low (support) and close (support when bullish, else
    resistance). Each point is weighted by linear recency (0.5 to 1.0) times the
    volume ratio, the close at 80%. Points within 3% of an existing level merge into
    it.

    Returns:
        Up to 5 levels by descending weight; empty with fewer than 20 bars
    """
    end = bars.last_index(end)
    count = end + 1
    if count < MIN_BARS:
        return []

    lookback = min(count, LOOKBACK_BARS)
    start = count - lookback
    points: list[ReferenceLine] = []

    for i in range(end, start - 1, -1):
        window = bars.volume[max(0, i - VOLUME_WINDOW) : i]
        if not window:
            continue
        avg_volume = _average(window)
        if avg_volume <= 0:
            continue

        ratio = bars.volume[i] / avg_volume
        if ratio < LINE_VOLUME_MULTIPLIER:
            continue

        weight = (0.5 + 0.5 * ((i - start) / lookback)) * ratio
        close_type = LineType.SUPPORT if bars.close[i] > bars.open[i] else LineType.RESISTANCE
        points.extend(
            [
                ReferenceLine(price=bars.high[i], type=LineType.RESISTANCE, weight=weight),
                ReferenceLine(price=bars.low[i], type=LineType.SUPPORT, weight=weight),
                ReferenceLine(price=bars.close[i], type=close_type, weight=weight * LINE_CLOSE_WEIGHT),
            ]
        )

    merged: list[ReferenceLine] = []
    for point in sorted(points, key=lambda line: line.price):
        existing = next(
            (line for line in merged if abs(line.price - point.price) / point.price < LINE_MERGE_DISTANCE),
            None,
        )
        if existing is not None:
            existing.weight += point.weight
            existing.hits += 1
        else:
            merged.append(point)

    return sorted(merged, key=lambda line: line.weight, reverse=True)[:MAX_REFERENCE_LINES]


def analyze_market(bars: BarSeries, moving_averages: dict[str, list], end: int | None = None) -> MarketAnalysis:
    """
    Classify moving-average order, volume trend and convergence at ``end``.

    Returns neutral defaults (``perfect_order=False``) before index 120.
    """
    i = bars.last_index(end)
    if i < MARKET_MIN_INDEX:
        return MarketAnalysis()

    def value(name: str, offset: int = 0) -> float | None:
        return _series_value(moving_averages, name, i - offset)

    s5, s10, s20, s60, s120, s240 = (value(name) for name in ("sma5", "sma10", "sma20", "sma60", "sma120", "sma240"))

    perfect_order = greater(s5, s20) and greater(s20, s60) and greater(s60, s120)
    if s240 is not None:
        perfect_order = perfect_order and greater(s120, s240)
    if s10 is not None:
        perfect_order = perfect_order and greater(s5, s10) and greater(s10, s20)

    previous_s5 = value("sma5", 1)
    earlier_s5 = value("sma5", 2)
    sma5_turning = greater(s5, previous_s5) and earlier_s5 is not None and previous_s5 <= earlier_s5

    volume_trend = VolumeTrend.NEUTRAL
    avg_volume = sum(bars.volume[i - VOLUME_WINDOW : i]) / VOLUME_WINDOW
    if bars.volume[i] > avg_volume * VOLUME_CLIMAX_MULTIPLIER:
        volume_trend = VolumeTrend.VOLUME_CLIMAX
    elif bars.volume[i] > avg_volume * VOLUME_CONFIRMED_MULTIPLIER:
        volume_trend = VolumeTrend.BULLISH_CONFIRMED

    convergence = False
    levels = [s5, s20, s60, s120] + ([s240] if s240 is not None else [])
    if all(level is not None for level in levels) and min(levels) > 0:
        convergence = (max(levels) - min(levels)) / min(levels) < CONVERGENCE_SPREAD

    def not_falling(name: str) -> bool:
        current = value(name)
        past = value(name, FLATTENING_OFFSET)
        return current is not None and past is not None and current >= past

    long_ma_flattening = not_falling("sma120") and (s240 is None or not_falling("sma240"))

    return MarketAnalysis(
        perfect_order=perfect_order,
        volume_trend=volume_trend,
        convergence=convergence,
        sma5_turning=sma5_turning,
        long_ma_flattening=long_ma_flattening,
    )


def calculate_n_wave_target(node: ReferenceNode | None, current_low: float) -> float | None:
    """N-wave target: pullback low plus the node height."""
    if node is None:
        return None
    return round(current_low + node.node_height, 2)


def calculate_e_wave_target(node: ReferenceNode | None) -> float | None:
    """E-wave target: node high plus the node height."""
    if node is None:
        return None
    return round(node.node_high + node.node_height, 2)


def check_target_overlap(n_target: float | None, e_target: float | None) -> TargetOverlap:
    """Flag N/E targets within 3% of each other as a reinforced resistance zone."""
    if not n_target or not e_target:
        return TargetOverlap(overlap=False)

    diff = abs(n_target - e_target) / min(n_target, e_target)
    if diff < VERY_STRONG_OVERLAP_DISTANCE:
        strength = OverlapStrength.VERY_STRONG
    elif diff < OVERLAP_DISTANCE:
        strength = OverlapStrength.STRONG
    else:
        strength = OverlapStrength.WEAK

    return TargetOverlap(
        overlap=diff < OVERLAP_DISTANCE,
        convergence_price=round((n_target + e_target) / 2, 2),
        strength=strength,
    )
