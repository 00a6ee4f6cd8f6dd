"""
Confluence scoring and the strategy decision.

Bullish and bearish evidence is collected as ``Factor`` tags, scored, and turned into a
single ``Decision`` by an ordered list of rule evaluators. The first rule that returns
a decision wins, which keeps the priority order SELL > BUY > HOLD > WAIT explicit and
lets each rule be tested on its own.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .base import BarSeries, greater
from .patterns import Divergence, Pattern, TrendStatus, detect_liquidity_sweep, detect_pattern, detect_smc_structures
from .schemas import StrategyConfig
from .structure import BaseCandle, MarketAnalysis, ReferenceNode


class Factor(Enum):
    """Confluence factor tags."""

    # Bullish
    UPTREND_EMA200 = "UPTREND_EMA200"
    SMA20_RISING = "SMA20_RISING"
    PERFECT_ORDER = "PERFECT_ORDER"
    RSI_BULLISH = "RSI_BULLISH"
    MACD_BULLISH = "MACD_BULLISH"
    STOCHASTIC_GOLDEN_CROSS = "STOCHASTIC_GOLDEN_CROSS"
    POWER_SQUEEZE_BREAKOUT = "POWER_SQUEEZE_BREAKOUT"
    SMC_CHOCH = "SMC_CHOCH"
    SMC_BOS = "SMC_BOS"
    THREE_BAR_BUY = "THREE_BAR_BUY"
    HIGH_PLAY_BREAKOUT = "HIGH_PLAY_BREAKOUT"
    AF_BREAKOUT = "AF_BREAKOUT"
    FVG_REBALANCE_SUPPORT = "FVG_REBALANCE_SUPPORT"
    BB_SQUEEZE_BREAKOUT = "BB_SQUEEZE_BREAKOUT"
    MA_COUNTING = "MA_COUNTING"
    MACD_SAR_BUY = "MACD_SAR_BUY"
    RSI_DIVERGENCE = "RSI_DIVERGENCE"
    ABOVE_ICHIMOKU_CLOUD = "ABOVE_ICHIMOKU_CLOUD"
    WAISTLINE_SUPPORT_BOUNCE = "WAISTLINE_SUPPORT_BOUNCE"
    LIQUIDITY_REVERSAL = "LIQUIDITY_REVERSAL"

    # Bearish
    SMA20_BREAKDOWN = "SMA20_BREAKDOWN"
    WAISTLINE_BROKEN = "WAISTLINE_BROKEN"
    RSI_BEARISH = "RSI_BEARISH"
    DEAD_CROSS = "DEAD_CROSS"
    VOLUME_CLIMAX = "VOLUME_CLIMAX"


# Patterns that count as bullish confluence
PATTERN_FACTORS = {
    Pattern.THREE_BAR_BUY: Factor.THREE_BAR_BUY,
    Pattern.HIGH_PLAY_BREAKOUT: Factor.HIGH_PLAY_BREAKOUT,
    Pattern.AF_BREAKOUT: Factor.AF_BREAKOUT,
    Pattern.FVG_REBALANCE_SUPPORT: Factor.FVG_REBALANCE_SUPPORT,
    Pattern.BB_SQUEEZE_BREAKOUT: Factor.BB_SQUEEZE_BREAKOUT,
    Pattern.MA_COUNTING: Factor.MA_COUNTING,
    Pattern.MACD_SAR_BUY: Factor.MACD_SAR_BUY,
}

# Bearish factors that always force a SELL
CRITICAL_BEARISH_FACTORS = {Factor.DEAD_CROSS, Factor.WAISTLINE_BROKEN}


class Action(Enum):
    """Decision action."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WAIT = "WAIT"


class ReasonCode(Enum):
    """Structured reason for a decision, rendered to prose by the presentation layer."""

    RISK_DETECTED = "RISK_DETECTED"
    BULLISH_PULLBACK = "BULLISH_PULLBACK"
    STRONG_CONFLUENCE = "STRONG_CONFLUENCE"
    TRENDING = "TRENDING"
    SIDEWAYS = "SIDEWAYS"


class MAState(Enum):
    PERFECT_ORDER = "PERFECT_ORDER"
    GOLDEN_CROSS = "GOLDEN_CROSS"
    BELOW_MA = "BELOW_MA"


class VolumeState(Enum):
    SURGE = "SURGE"
    ACTIVE = "ACTIVE"
    QUIET = "QUIET"


class RSIZone(Enum):
    OVERBOUGHT = "OVERBOUGHT"
    OVERSOLD = "OVERSOLD"
    NEUTRAL = "NEUTRAL"


class BaseState(Enum):
    NO_BASE = "NO_BASE"
    HOLDING_SUPPORT = "HOLDING_SUPPORT"
    BREAKOUT = "BREAKOUT"
    BREAKDOWN = "BREAKDOWN"
    PULLBACK = "PULLBACK"


@dataclass(frozen=True)
class Reason:
    """Machine-readable rationale: a code, the factors behind it and numeric parameters."""

    code: ReasonCode
    factors: list[Factor] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NarrativeReport:
    """Classified market narrative consumed verbatim by the presentation layer."""

    ma_state: MAState
    sma_gap: float | None
    volume_ratio: int
    volume_state: VolumeState
    rsi: float | None
    rsi_zone: RSIZone
    base_state: BaseState
    support_level: float | None
    resistance_level: float | None


@dataclass
class Decision:
    """Strategy decision at one bar."""

    action: Action
    reason: Reason
    target_price: float | None = None
    target_price2: float | None = None
    stop_loss: float | None = None
    pattern: str = "N/A"
    score: int = 50
    bullish_factors: list[Factor] = field(default_factory=list)
    bearish_factors: list[Factor] = field(default_factory=list)
    detected_pattern: Pattern | None = None
    report: NarrativeReport | None = None


@dataclass(frozen=True)
class StrategyContext:
    """Everything the decision needs about bar ``index``."""

    bars: BarSeries
    index: int
    standard_bar: BaseCandle | None
    node: ReferenceNode | None
    market: MarketAnalysis
    divergence: Divergence | None = None
    trend_status: TrendStatus | None = None
    timeframe: str = "1d"

    @property
    def price(self) -> float:
        return self.bars.close[self.index]

    @property
    def previous_price(self) -> float:
        return self.bars.close[self.index - 1] if self.index > 0 else self.price

    @property
    def waistline(self) -> float | None:
        if self.node is not None:
            return self.node.waistline
        if self.standard_bar is not None:
            return self.standard_bar.waistline
        return None

    def value(self, name: str, offset: int = 0) -> Any:
        return self.bars.value(name, self.index - offset)


@dataclass(frozen=True)
class Evidence:
    """Factors and derived levels shared by the rule evaluators."""

    bullish: list[Factor]
    bearish: list[Factor]
    score: int
    pattern: Pattern | None


def _liquidity_reversal(ctx: StrategyContext) -> bool:
    i = ctx.index
    if detect_liquidity_sweep(ctx.bars, i):
        return False
    for j in range(i - 1, max(0, i - 5) - 1, -1):
        if detect_liquidity_sweep(ctx.bars, j):
            return ctx.price > ctx.bars.high[j]
    return False


def detect_bullish_factors(ctx: StrategyContext, pattern: Pattern | None, smc: Pattern | None) -> list[Factor]:
    """Collect bullish confluence factors at ``ctx.index`` in evaluation order."""
    factors = []
    price = ctx.price

    if greater(price, ctx.value("ema200")):
        factors.append(Factor.UPTREND_EMA200)
    if greater(ctx.value("sma20"), ctx.value("sma20", 1)):
        factors.append(Factor.SMA20_RISING)
    if ctx.market.perfect_order:
        factors.append(Factor.PERFECT_ORDER)

    rsi = ctx.value("rsi")
    if rsi is not None and 50 < rsi < 70:
        factors.append(Factor.RSI_BULLISH)
    if greater(ctx.value("macd_histogram"), 0):
        factors.append(Factor.MACD_BULLISH)
    stoch_k = ctx.value("stoch_k")
    if greater(stoch_k, ctx.value("stoch_d")) and stoch_k < 80:
        factors.append(Factor.STOCHASTIC_GOLDEN_CROSS)

    if greater(price, ctx.value("bb_upper")) and greater(price, ctx.value("keltner_upper")):
        factors.append(Factor.POWER_SQUEEZE_BREAKOUT)

    if smc == Pattern.SMC_CHOCH:
        factors.append(Factor.SMC_CHOCH)
    if smc == Pattern.SMC_BOS:
        factors.append(Factor.SMC_BOS)

    if pattern in PATTERN_FACTORS:
        factors.append(PATTERN_FACTORS[pattern])
    if ctx.divergence == Divergence.BULLISH_DIV:
        factors.append(Factor.RSI_DIVERGENCE)

    if greater(price, ctx.value("span_a")) and greater(price, ctx.value("span_b")):
        factors.append(Factor.ABOVE_ICHIMOKU_CLOUD)

    node = ctx.node
    if node is not None and price > node.waistline and ctx.bars.low[ctx.index] <= node.waistline * 1.01:
        factors.append(Factor.WAISTLINE_SUPPORT_BOUNCE)

    if _liquidity_reversal(ctx) and Factor.LIQUIDITY_REVERSAL not in factors:
        factors.append(Factor.LIQUIDITY_REVERSAL)

    return factors


def detect_bearish_factors(ctx: StrategyContext) -> list[Factor]:
    """Collect bearish confluence factors at ``ctx.index`` in evaluation order."""
    factors = []
    i = ctx.index
    price = ctx.price

    if greater(ctx.value("sma20"), price) and price < ctx.previous_price:
        factors.append(Factor.SMA20_BREAKDOWN)
    if ctx.node is not None and price < ctx.node.waistline:
        factors.append(Factor.WAISTLINE_BROKEN)

    rsi = ctx.value("rsi")
    if rsi is not None and rsi < 40:
        factors.append(Factor.RSI_BEARISH)

    s5, s20 = ctx.value("sma5"), ctx.value("sma20")
    s5_prev, s20_prev = ctx.value("sma5", 1), ctx.value("sma20", 1)
    if greater(s20, s5) and s5_prev is not None and s20_prev is not None and s5_prev >= s20_prev:
        factors.append(Factor.DEAD_CROSS)

    if i > 0:
        window = ctx.bars.volume[max(0, i - 10) : i]
        avg_volume = sum(window) / min(10, i)
        if ctx.bars.volume[i] > avg_volume * 3.0 and price > ctx.previous_price:
            factors.append(Factor.VOLUME_CLIMAX)

    return factors


def confluence_score(bullish: list[Factor], bearish: list[Factor]) -> int:
    """``min(50 + 15 * bullish, 99)``, or 10 when any bearish factor is present."""
    if bearish:
        return 10
    return min(50 + 15 * len(bullish), 99)


def build_report(ctx: StrategyContext) -> NarrativeReport:
    """Classify MA, volume, RSI and base-candle state for the presentation layer."""
    i = ctx.index
    price = ctx.price
    s5, s20 = ctx.value("sma5"), ctx.value("sma20")
    sma_gap = round((s5 - s20) / s20 * 100, 2) if s5 is not None and s20 else None

    if ctx.market.perfect_order:
        ma_state = MAState.PERFECT_ORDER
    elif greater(s5, s20):
        ma_state = MAState.GOLDEN_CROSS
    else:
        ma_state = MAState.BELOW_MA

    recent = ctx.bars.volume[max(0, i - 9) : i + 1]
    avg_volume = sum(recent) / len(recent)
    volume_ratio = round(ctx.bars.volume[i] / avg_volume * 100) if avg_volume > 0 else 0
    if volume_ratio > 200:
        volume_state = VolumeState.SURGE
    elif volume_ratio > 130:
        volume_state = VolumeState.ACTIVE
    else:
        volume_state = VolumeState.QUIET

    rsi = ctx.value("rsi")
    if greater(rsi, 75):
        rsi_zone = RSIZone.OVERBOUGHT
    elif rsi is not None and rsi < 25:
        rsi_zone = RSIZone.OVERSOLD
    else:
        rsi_zone = RSIZone.NEUTRAL

    base_state = BaseState.NO_BASE
    support_level = round(s20, 2) if s20 is not None else None
    resistance_level = round(price * 1.05, 2)

    node = ctx.node
    if ctx.standard_bar is not None and node is not None:
        support_level = round(node.waistline, 2)
        resistance_level = round(node.node_high, 2)
        distance = (price - node.waistline) / node.waistline
        if abs(distance) < 0.02:
            base_state = BaseState.HOLDING_SUPPORT
        elif price > node.node_high:
            base_state = BaseState.BREAKOUT
        elif price < node.waistline:
            base_state = BaseState.BREAKDOWN
        else:
            base_state = BaseState.PULLBACK

    return NarrativeReport(
        ma_state=ma_state,
        sma_gap=sma_gap,
        volume_ratio=volume_ratio,
        volume_state=volume_state,
        rsi=rsi,
        rsi_zone=rsi_zone,
        base_state=base_state,
        support_level=support_level,
        resistance_level=resistance_level,
    )


# =============================================================================
# Rule evaluators
# =============================================================================

Rule = Callable[[StrategyContext, Evidence, StrategyConfig], "Decision | None"]


def _protective_stop(ctx: StrategyContext, config: StrategyConfig) -> float:
    waistline = ctx.waistline
    return round(waistline if waistline else ctx.price, config.price_precision)


def caution_rule(ctx: StrategyContext, evidence: Evidence, config: StrategyConfig) -> Decision | None:
    """Downgrade a single minor bearish factor to HOLD inside a dominant uptrend."""
    if not evidence.bearish:
        return None
    primary = evidence.bearish[0]
    dominant = len(evidence.bullish) >= 3 and greater(ctx.price, ctx.value("ema200"))
    if not dominant or len(evidence.bearish) >= 2 or primary in CRITICAL_BEARISH_FACTORS:
        return None

    return Decision(
        action=Action.HOLD,
        reason=Reason(
            code=ReasonCode.BULLISH_PULLBACK,
            factors=list(evidence.bearish),
            params={"primary": primary.value, "waistline": ctx.waistline},
        ),
        target_price=round(ctx.price * 1.05, config.price_precision),
        stop_loss=_protective_stop(ctx, config),
        pattern="BULLISH_PULLBACK",
    )


def sell_rule(ctx: StrategyContext, evidence: Evidence, config: StrategyConfig) -> Decision | None:
    """Any bearish factor sells, led by the first one found."""
    if not evidence.bearish:
        return None
    primary = evidence.bearish[0]

    return Decision(
        action=Action.SELL,
        reason=Reason(
            code=ReasonCode.RISK_DETECTED,
            factors=list(evidence.bearish),
            params={"primary": primary.value},
        ),
        stop_loss=_protective_stop(ctx, config),
        pattern=primary.value,
    )


def buy_rule(ctx: StrategyContext, evidence: Evidence, config: StrategyConfig) -> Decision | None:
    """Two or more bullish factors buy with ATR-based targets and a chandelier or ATR stop."""
    if len(evidence.bullish) < 2:
        return None

    price = ctx.price
    atr = ctx.value("atr") or price * 0.03
    take_profit, stop_loss = config.multipliers(ctx.timeframe)
    chandelier = ctx.value("chandelier_stop")
    stop = chandelier if chandelier else price - atr * stop_loss

    if Factor.POWER_SQUEEZE_BREAKOUT in evidence.bullish:
        label = "POWER_SQUEEZE"
    elif Factor.LIQUIDITY_REVERSAL in evidence.bullish:
        label = "LIQUIDITY_REVERSAL"
    elif Factor.SMC_CHOCH in evidence.bullish:
        label = "SMC_REVERSAL"
    else:
        label = "CONFLUENCE_BUY"

    precision = config.price_precision
    return Decision(
        action=Action.BUY,
        reason=Reason(
            code=ReasonCode.STRONG_CONFLUENCE,
            factors=list(evidence.bullish),
            params={"factor_count": len(evidence.bullish), "atr": atr, "take_profit_multiplier": take_profit},
        ),
        target_price=round(price + atr * take_profit, precision),
        target_price2=round(price + atr * take_profit * 2, precision),
        stop_loss=round(stop, precision),
        pattern=label,
    )


def trend_hold_rule(ctx: StrategyContext, evidence: Evidence, config: StrategyConfig) -> Decision | None:
    """Hold a perfect-order trend with a soft target and a chandelier or SMA20 stop."""
    if not ctx.market.perfect_order:
        return None

    stop = ctx.value("chandelier_stop") or ctx.value("sma20")
    return Decision(
        action=Action.HOLD,
        reason=Reason(code=ReasonCode.TRENDING),
        target_price=round(ctx.price * 1.12, config.price_precision),
        stop_loss=round(stop, config.price_precision) if stop is not None else None,
        pattern="TRENDING",
    )


def wait_rule(ctx: StrategyContext, evidence: Evidence, config: StrategyConfig) -> Decision | None:
    return Decision(action=Action.WAIT, reason=Reason(code=ReasonCode.SIDEWAYS), pattern="SIDEWAYS")


RULES: list[Rule] = [caution_rule, sell_rule, buy_rule, trend_hold_rule, wait_rule]


def gather_evidence(ctx: StrategyContext) -> Evidence:
    """Detect the pattern, SMC structure and both factor pools at ``ctx.index``."""
    pattern = detect_pattern(ctx.bars, ctx.index, ctx.standard_bar, ctx.node, ctx.trend_status)
    if ctx.divergence == Divergence.BULLISH_DIV:
        pattern = Pattern.RSI_DIVERGENCE
    smc = detect_smc_structures(ctx.bars, ctx.index)

    bullish = detect_bullish_factors(ctx, pattern, smc)
    bearish = detect_bearish_factors(ctx)
    return Evidence(bullish=bullish, bearish=bearish, score=confluence_score(bullish, bearish), pattern=pattern)


def recommend_strategy(ctx: StrategyContext, config: StrategyConfig | None = None) -> Decision:
    """
    Turn the evidence at ``ctx.index`` into a single decision.

    Rules run in priority order (cautionary HOLD, SELL, BUY, trend HOLD, WAIT) and the
    first decision returned wins. Every decision carries the confluence score, both
    factor lists and a ``NarrativeReport``.

    Args:
        ctx: Bars, index and derived structure for the bar being decided
        config: Risk parameters; defaults to ``StrategyConfig()``

    Returns:
        Decision for the bar
    """
    config = config or StrategyConfig()
    evidence = gather_evidence(ctx)

    for rule in RULES:
        decision = rule(ctx, evidence, config)
        if decision is not None:
            break

    decision.score = evidence.score
    decision.bullish_factors = evidence.bullish
    decision.bearish_factors = evidence.bearish
    decision.detected_pattern = evidence.pattern
    decision.report = build_report(ctx)
    return decision
