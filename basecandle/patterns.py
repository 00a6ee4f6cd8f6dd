"""
Pattern detectors.

Each detector is a pure predicate evaluated at index ``i`` of a ``BarSeries`` whose
indicator columns come from ``Indicators.process``. Detectors only read bars and
indicator values at indices ``<= i`` and return a tag or None.
"""

from enum import Enum

from .base import BarSeries, greater
from .structure import BaseCandle, ReferenceNode


class Pattern(Enum):
    """Named setups recognized by the detectors."""

    THREE_BAR_BUY = "THREE_BAR_BUY"
    HIGH_PLAY_BREAKOUT = "HIGH_PLAY_BREAKOUT"
    HIGH_PLAY_CONSOLIDATION = "HIGH_PLAY_CONSOLIDATION"
    AF_BREAKOUT = "AF_BREAKOUT"
    AF_FLOAT_ZONE = "AF_FLOAT_ZONE"
    FVG_REBALANCE_SUPPORT = "FVG_REBALANCE_SUPPORT"
    LIQUIDITY_SWEEP = "LIQUIDITY_SWEEP"
    BB_SQUEEZE_BREAKOUT = "BB_SQUEEZE_BREAKOUT"
    TRAP_RECOVERY = "TRAP_RECOVERY"
    TRAP_CONFIRMED = "TRAP_CONFIRMED"
    MA_COUNTING = "MA_COUNTING"
    SMC_BOS = "SMC_BOS"
    SMC_CHOCH = "SMC_CHOCH"
    MACD_SAR_BUY = "MACD_SAR_BUY"
    RSI_DIVERGENCE = "RSI_DIVERGENCE"


class Divergence(Enum):
    """RSI divergence direction."""

    BULLISH_DIV = "BULLISH_DIV"
    BEARISH_DIV = "BEARISH_DIV"


class TrendStatus(Enum):
    """Major-timeframe trend relative to its 200-period EMA."""

    BULLISH = "bullish"
    BEARISH = "bearish"


MIN_PATTERN_BARS = 5


def is_momentum_candle(bars: BarSeries, i: int) -> bool:
    """Body larger than 1.8x the mean body of the previous 10 bars; true with less history."""
    if i < 10:
        return True
    avg_body = sum(abs(bars.close[j] - bars.open[j]) for j in range(i - 10, i)) / 10
    return abs(bars.close[i] - bars.open[i]) > avg_body * 1.8


def detect_three_bar(bars: BarSeries, i: int) -> Pattern | None:
    """Igniting bar (body > 1.5 ATR), small opposite pullback bar, confirmation above its high."""
    if i < 2:
        return None
    atr = bars.value("atr", i - 2)
    if atr is None:
        return None

    igniting, pullback = bars.bar(i - 2), bars.bar(i - 1)
    body = igniting.body
    is_igniting = body > atr * 1.5 and igniting.is_bullish
    is_pullback = pullback.is_bearish and pullback.range < body * 0.5
    is_confirmed = bars.close[i] > pullback.high

    if is_igniting and is_pullback and is_confirmed:
        return Pattern.THREE_BAR_BUY
    return None


def _breakout_pressure(bars: BarSeries, i: int) -> bool:
    return greater(bars.value("volume_oscillator", i), 0) or is_momentum_candle(bars, i)


def detect_high_play(
    bars: BarSeries, i: int, standard_bar: BaseCandle | None, node: ReferenceNode | None
) -> Pattern | None:
    """
    Consolidation in the upper third of the node on drying volume.

    Requires 5 of the previous 10 closes above the upper third and an average volume
    under 40% of the base candle. A close above the node high with a positive volume
    oscillator or a momentum body is a breakout.
    """
    if standard_bar is None or node is None:
        return None
    start = max(0, i - 10)
    if start >= i:
        return None

    upper_boundary = node.node_low + node.node_height * (2 / 3)
    in_upper_zone = sum(1 for j in range(start, i) if bars.close[j] > upper_boundary) >= 5
    volume_drying = sum(bars.volume[start:i]) / (i - start) < standard_bar.volume * 0.4

    if not (in_upper_zone and volume_drying):
        return None
    if bars.close[i] > node.node_high and _breakout_pressure(bars, i):
        return Pattern.HIGH_PLAY_BREAKOUT
    return Pattern.HIGH_PLAY_CONSOLIDATION


def detect_af_pattern(
    bars: BarSeries, i: int, standard_bar: BaseCandle | None, node: ReferenceNode | None
) -> Pattern | None:
    """
    Float zone above the waistline with a fresh breakout of the node high.

    Requires 5 of the previous 8 closes above the waistline and an average volume under
    50% of the base candle.
    """
    if standard_bar is None or node is None:
        return None
    start = max(0, i - 8)
    if start >= i:
        return None

    above_waist = sum(1 for j in range(start, i) if bars.close[j] > node.waistline) >= 5
    volume_decay = sum(bars.volume[start:i]) / (i - start) < standard_bar.volume * 0.5

    if not (above_waist and volume_decay):
        return None
    fresh_cross = bars.close[i] > node.node_high and bars.close[i - 1] <= node.node_high
    if fresh_cross and _breakout_pressure(bars, i):
        return Pattern.AF_BREAKOUT
    return Pattern.AF_FLOAT_ZONE


def detect_fvg(bars: BarSeries, i: int) -> Pattern | None:
    """
    Retest of an unfilled bullish fair value gap from the last 20 bars.

    The gap ``low[j] - high[j-2]`` must be at least 0.3 ATR and its middle bar must
    carry 1.2x the trailing 10-bar volume. The current bar must close bullish strictly
    inside the gap, and no bar since the gap may have traded below its lower edge.
    """
    if i < 5:
        return None

    for j in range(i - 1, i - 20, -1):
        if j < 2:
            break

        gap_bottom = bars.high[j - 2]
        gap_top = bars.low[j]
        atr = bars.value("atr", j)
        if atr is None or gap_top - gap_bottom < atr * 0.3:
            continue

        avg_volume = sum(bars.volume[max(0, j - 10) : j]) / 10
        if bars.volume[j - 1] < avg_volume * 1.2:
            continue

        price = bars.close[i]
        is_testing_gap = gap_bottom < price < gap_top
        is_rebounding = bars.close[i] > bars.open[i]
        if is_testing_gap and is_rebounding:
            was_filled = any(bars.low[k] < gap_bottom for k in range(j + 1, i))
            if not was_filled:
                return Pattern.FVG_REBALANCE_SUPPORT

    return None


def detect_liquidity_sweep(bars: BarSeries, i: int) -> Pattern | None:
    """Undercut of the prior 10-bar low reclaimed by the close."""
    if i < 10:
        return None
    min_low = min(bars.low[i - 10 : i])
    if bars.low[i] < min_low and bars.close[i] > min_low:
        return Pattern.LIQUIDITY_SWEEP
    return None


def detect_bb_squeeze(bars: BarSeries, i: int) -> Pattern | None:
    """Bandwidth within 1.2x its 20-bar minimum, expanding, with MFI above 50."""
    if i < 20:
        return None
    widths = [bars.value("bb_width", j) for j in range(i - 20, i + 1)]
    if any(width is None for width in widths):
        return None

    current, previous = widths[-1], widths[-2]
    is_squeezed = current < min(widths) * 1.2
    is_expanding = current > previous
    has_momentum = greater(bars.value("mfi", i), 50)

    if is_squeezed and is_expanding and has_momentum:
        return Pattern.BB_SQUEEZE_BREAKOUT
    return None


def detect_trap(bars: BarSeries, i: int, waistline: float | None) -> Pattern | None:
    """Close recovering above the waistline, or a second close below it after holding above."""
    if waistline is None or i < 1:
        return None
    price = bars.close[i]
    previous = bars.close[i - 1]
    earlier = bars.close[i - 2] if i >= 2 else previous

    if previous < waistline < price:
        return Pattern.TRAP_RECOVERY
    if earlier > waistline and previous < waistline and price < waistline:
        return Pattern.TRAP_CONFIRMED
    return None


def detect_ma_counting(bars: BarSeries, i: int) -> Pattern | None:
    """SMA5 turning up, price above its level 5 bars ago and within 2% of the SMA20."""
    if i < 5:
        return None
    s5, s5_prev, s5_earlier = (bars.value("sma5", i - offset) for offset in range(3))
    sma20 = bars.value("sma20", i)
    if s5_prev is None or s5_earlier is None or not sma20:
        return None

    sma5_rising = greater(s5, s5_prev) and s5_prev <= s5_earlier
    above_5_ago = bars.close[i] > bars.close[i - 5]
    near_sma20 = abs(bars.close[i] - sma20) / sma20 < 0.02

    if sma5_rising and above_5_ago and near_sma20:
        return Pattern.MA_COUNTING
    return None


def detect_smc_structures(bars: BarSeries, i: int) -> Pattern | None:
    """
    First close above the 20-bar swing high (BOS) or the 60-bar major high (CHoCH).

    CHoCH takes priority when both cross on the same bar.
    """
    if i < 60:
        return None
    swing_high = max(bars.high[i - 20 : i])
    major_high = max(bars.high[max(0, i - 60) : i])
    price, previous = bars.close[i], bars.close[i - 1]

    if price > major_high and previous <= major_high:
        return Pattern.SMC_CHOCH
    if price > swing_high and previous <= swing_high:
        return Pattern.SMC_BOS
    return None


def detect_macd_sar(bars: BarSeries, i: int) -> Pattern | None:
    """Close above the EMA200, SAR below the low and MACD crossing above its signal."""
    if i < 1:
        return None
    ema200 = bars.value("ema200", i)
    sar = bars.value("sar", i)
    line, signal = bars.value("macd", i), bars.value("macd_signal", i)
    prev_line, prev_signal = bars.value("macd", i - 1), bars.value("macd_signal", i - 1)
    if None in (ema200, sar, line, signal, prev_line, prev_signal):
        return None

    is_bullish = bars.close[i] > ema200
    sar_below = sar < bars.low[i]
    macd_cross = line > signal and prev_line <= prev_signal

    if is_bullish and sar_below and macd_cross:
        return Pattern.MACD_SAR_BUY
    return None


def detect_rsi_divergence(bars: BarSeries, i: int) -> Divergence | None:
    """
    Price vs. RSI divergence against the extreme close of bars ``[i-20, i-5)``.

    Bullish: lower close with a higher RSI below 40. Bearish: higher close with a lower
    RSI above 60.
    """
    if i < 20:
        return None
    current_rsi = bars.value("rsi", i)
    if current_rsi is None:
        return None

    window = bars.close[i - 20 : i - 5]
    price = bars.close[i]

    low_idx = i - 20 + window.index(min(window))
    low_rsi = bars.value("rsi", low_idx)
    if price < bars.close[low_idx] and low_rsi is not None and current_rsi > low_rsi and current_rsi < 40:
        return Divergence.BULLISH_DIV

    high_idx = i - 20 + window.index(max(window))
    high_rsi = bars.value("rsi", high_idx)
    if price > bars.close[high_idx] and high_rsi is not None and current_rsi < high_rsi and current_rsi > 60:
        return Divergence.BEARISH_DIV

    return None


def detect_pattern(
    bars: BarSeries,
    i: int,
    standard_bar: BaseCandle | None,
    node: ReferenceNode | None,
    trend_status: TrendStatus | None = None,
) -> Pattern | None:
    """
    Return the highest-priority pattern at ``i``.

    Priority: 3-bar, high play, AF, FVG, liquidity sweep, Bollinger squeeze, trap,
    MA counting, MACD + SAR. The 3-bar, FVG and sweep setups require a close above the
    EMA200 (when defined); the 3-bar, high play, AF and FVG setups require a bullish
    major-timeframe trend when one is supplied.
    """
    if i + 1 < MIN_PATTERN_BARS:
        return None

    ema200 = bars.value("ema200", i)
    bullish_trend = ema200 is None or bars.close[i] > ema200
    passes_mtf = trend_status is None or trend_status == TrendStatus.BULLISH

    three_bar = detect_three_bar(bars, i)
    if three_bar and bullish_trend and passes_mtf:
        return three_bar

    if standard_bar is not None and node is not None:
        high_play = detect_high_play(bars, i, standard_bar, node)
        if high_play and passes_mtf:
            return high_play

        af = detect_af_pattern(bars, i, standard_bar, node)
        if af and passes_mtf:
            return af

    fvg = detect_fvg(bars, i)
    if fvg and bullish_trend and passes_mtf:
        return fvg

    sweep = detect_liquidity_sweep(bars, i)
    if sweep and bullish_trend:
        return sweep

    squeeze = detect_bb_squeeze(bars, i)
    if squeeze:
        return squeeze

    if node is not None:
        waistline = node.waistline
    elif standard_bar is not None:
        waistline = standard_bar.waistline
    else:
        waistline = None
    trap = detect_trap(bars, i, waistline)
    if trap:
        return trap

    ma_counting = detect_ma_counting(bars, i)
    if ma_counting:
        return ma_counting

    return detect_macd_sar(bars, i)
