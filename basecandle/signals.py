"""
Walk-forward signal generation.

This module replays a bar history bar by bar, re-deriving the base candle, reference
node, market analysis and strategy decision from the prefix ``[0..i]`` only, and emits
debounced BUY/SELL markers. It also exposes the single-point analysis of the latest
bar and the major-timeframe trend filter.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from pandas import DataFrame as PandasDataFrame
from polars import DataFrame as PolarsDataFrame
from polars import Float64, Int64, List, String

from .backtest import BacktestResult, perform_backtest
from .base import BarSeries, Component
from .indicators import Indicators, ema
from .patterns import TrendStatus, detect_rsi_divergence
from .schemas import EngineConfig
from .strategy import Action, Decision, Factor, Reason, StrategyContext, recommend_strategy
from .structure import (
    BaseCandle,
    MarketAnalysis,
    ReferenceLine,
    ReferenceNode,
    TargetOverlap,
    analyze_market,
    calculate_e_wave_target,
    calculate_n_wave_target,
    calculate_reference_node,
    check_target_overlap,
    find_reference_lines,
    find_standard_bar,
)


class Direction(Enum):
    """Marker direction."""

    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class SignalMarker:
    """Timestamped BUY/SELL marker emitted by the walk-forward loop."""

    timestamp: object
    index: int
    direction: Direction
    target_price: float | None
    target_price2: float | None
    stop_loss: float | None
    pattern: str
    bullish_factors: list[Factor] = field(default_factory=list)
    bearish_factors: list[Factor] = field(default_factory=list)
    reason: Reason | None = None
    score: int = 50

    @classmethod
    def from_decision(cls, decision: Decision, timestamp: object, index: int, direction: Direction) -> "SignalMarker":
        return cls(
            timestamp=timestamp,
            index=index,
            direction=direction,
            target_price=decision.target_price,
            target_price2=decision.target_price2,
            stop_loss=decision.stop_loss,
            pattern=decision.pattern,
            bullish_factors=list(decision.bullish_factors),
            bearish_factors=list(decision.bearish_factors),
            reason=decision.reason,
            score=decision.score,
        )


# Polars dtypes of the marker frame (timestamp keeps the input dtype)
MARKER_COLUMN_TYPES = {
    "index": Int64,
    "direction": String,
    "target_price": Float64,
    "target_price2": Float64,
    "stop_loss": Float64,
    "pattern": String,
    "score": Int64,
    "reason": String,
    "bullish_factors": List(String),
    "bearish_factors": List(String),
}


@dataclass(frozen=True)
class EngineResult:
    """Full engine output: markers, their backtest and the reference lines of the whole history."""

    markers: list[SignalMarker] = field(default_factory=list)
    backtest: BacktestResult = field(default_factory=BacktestResult)
    reference_lines: list[ReferenceLine] = field(default_factory=list)

    def markers_frame(self) -> PolarsDataFrame:
        """Markers as a Polars DataFrame, one row per marker."""
        return PolarsDataFrame(
            {
                "timestamp": [marker.timestamp for marker in self.markers],
                "index": [marker.index for marker in self.markers],
                "direction": [marker.direction.value for marker in self.markers],
                "target_price": [marker.target_price for marker in self.markers],
                "target_price2": [marker.target_price2 for marker in self.markers],
                "stop_loss": [marker.stop_loss for marker in self.markers],
                "pattern": [marker.pattern for marker in self.markers],
                "score": [marker.score for marker in self.markers],
                "reason": [marker.reason.code.value if marker.reason else None for marker in self.markers],
                "bullish_factors": [[factor.value for factor in marker.bullish_factors] for marker in self.markers],
                "bearish_factors": [[factor.value for factor in marker.bearish_factors] for marker in self.markers],
            },
            schema_overrides=MARKER_COLUMN_TYPES,
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Single-point analysis of the latest bar."""

    decision: Decision
    market: MarketAnalysis
    standard_bar: BaseCandle | None
    node: ReferenceNode | None
    reference_lines: list[ReferenceLine]
    trend_status: TrendStatus | None = None
    n_wave_target: float | None = None
    e_wave_target: float | None = None
    target_overlap: TargetOverlap = field(default_factory=lambda: TargetOverlap(overlap=False))


def evaluate_bar(
    bars: BarSeries, i: int, trend_status: TrendStatus | None = None, config: EngineConfig | None = None
) -> Decision:
    """
    Decide bar ``i`` from the prefix ``[0..i]``.

    Args:
        bars: Bar history with indicator columns from ``Indicators.process``
        i: Bar index to decide
        trend_status: Major-timeframe trend, or None when the filter is inactive
        config: Engine configuration; defaults to ``EngineConfig()``

    Returns:
        Strategy decision for bar ``i``
    """
    config = config or EngineConfig()
    moving_averages = bars.indicators

    standard_bar = find_standard_bar(bars, moving_averages, end=i)
    context = StrategyContext(
        bars=bars,
        index=i,
        standard_bar=standard_bar,
        node=calculate_reference_node(bars, standard_bar, end=i),
        market=analyze_market(bars, moving_averages, end=i),
        divergence=detect_rsi_divergence(bars, i),
        trend_status=trend_status,
        timeframe=config.timeframe,
    )
    return recommend_strategy(context, config.strategy)


class SignalEngine(Component):
    """
    Walk-forward signal engine.

    Computes every indicator once over the full history, then replays bars from the
    warm-up index onward, deciding each bar from its causal prefix. Markers are
    debounced per direction by the configured cooldown and backtested against the same
    history.
    """

    # Type hints for commonly accessed attributes
    config: EngineConfig

    def __init__(self, config: EngineConfig | None = None):
        """
        Initialize the engine with validated configuration.

        Args:
            config: Validated EngineConfig; defaults to ``EngineConfig()``
        """
        super().__init__()

        self.config = config or EngineConfig()
        self.indicators = Indicators(self.config.indicators)

    def prepare(self, data: PolarsDataFrame | PandasDataFrame) -> BarSeries:
        """Validate bars, append indicator columns and materialise them as a BarSeries."""
        enriched = self.indicators.process(data)
        return BarSeries.from_frame(enriched)

    def major_trend_status(self, mtf_data: PolarsDataFrame | PandasDataFrame | None) -> TrendStatus | None:
        """
        Binary trend of the major-timeframe series from its last close vs. its trend EMA.

        Returns:
            TrendStatus, or None (filter inactive) without a series or with too few bars
        """
        if mtf_data is None:
            return None

        df = self._convert_to_polars(mtf_data)
        if len(df) <= self.config.mtf_min_bars:
            logging.info(
                f"Major timeframe series has {len(df)} bars (needs more than {self.config.mtf_min_bars}); trend filter inactive"
            )
            return None

        closes = df["close"]
        trend_ema = ema(closes, self.config.indicators.ema_trend_period)
        status = TrendStatus.BULLISH if closes[-1] > trend_ema[-1] else TrendStatus.BEARISH
        logging.info(f"Major timeframe trend: {status.value}")
        return status

    def run(
        self, data: PolarsDataFrame | PandasDataFrame, mtf_data: PolarsDataFrame | PandasDataFrame | None = None
    ) -> EngineResult:
        """
        Generate markers, their backtest and reference lines for a bar history.

        The major-timeframe trend is read once from the last bar of ``mtf_data`` and
        applied to every replayed bar, so earlier markers are filtered with
        higher-timeframe information from later dates. Pass a series truncated to
        each bar's date when a strictly causal filter is needed.

        Args:
            data: Primary OHLCV bars sorted by timestamp
            mtf_data: Optional major-timeframe bars for the trend filter

        Returns:
            EngineResult; empty markers and a zero backtest with fewer than ``min_bars`` bars
        """
        self.validate_input(data)

        df = self._convert_to_polars(data)
        if len(df) < self.config.min_bars:
            logging.warning(f"Insufficient history: {len(df)} bars (need {self.config.min_bars}); no signals generated")
            return EngineResult()

        bars = self.prepare(df)
        trend_status = self.major_trend_status(mtf_data)
        markers = self._walk_forward(bars, trend_status)

        backtest = perform_backtest(bars, markers, self.config.timeframe, self.config.backtest)
        result = EngineResult(markers=markers, backtest=backtest, reference_lines=find_reference_lines(bars))

        logging.info(
            f"Generated {len(markers)} markers over {len(bars)} bars; "
            f"backtest {backtest.wins}/{backtest.total} wins ({backtest.win_rate}%)"
        )
        return result

    def _walk_forward(self, bars: BarSeries, trend_status: TrendStatus | None) -> list[SignalMarker]:
        cooldown = self.config.cooldown_bars
        last_emitted = {Direction.BUY: -100, Direction.SELL: -100}
        markers: list[SignalMarker] = []

        for i in range(self.config.warmup_bars, len(bars)):
            if not bars.close[i] or not bars.close[i - 1]:
                continue

            decision = evaluate_bar(bars, i, trend_status, self.config)
            if decision.action == Action.BUY:
                direction = Direction.BUY
            elif decision.action == Action.SELL:
                direction = Direction.SELL
            else:
                continue

            if i - last_emitted[direction] < cooldown:
                logging.debug(f"Suppressed {direction.value} at bar {i}: last marker at bar {last_emitted[direction]}")
                continue

            markers.append(SignalMarker.from_decision(decision, bars.timestamp[i], i, direction))
            last_emitted[direction] = i

        return markers

    def process(self, data: PolarsDataFrame | PandasDataFrame) -> PolarsDataFrame:
        """
        Generate markers for a bar history without a major-timeframe filter.

        Returns:
            Markers as a Polars DataFrame (see ``EngineResult.markers_frame``)
        """
        return self.run(data).markers_frame()

    def evaluate(
        self, data: PolarsDataFrame | PandasDataFrame, mtf_data: PolarsDataFrame | PandasDataFrame | None = None
    ) -> Decision:
        """Decision for the latest bar of ``data``."""
        return self.analyze(data, mtf_data).decision

    def analyze(
        self, data: PolarsDataFrame | PandasDataFrame, mtf_data: PolarsDataFrame | PandasDataFrame | None = None
    ) -> MarketSnapshot:
        """
        Full single-point analysis of the latest bar.

        Returns:
            MarketSnapshot with the decision, market analysis, base candle, reference node,
            reference lines and N/E wave targets

        Raises:
            ValueError: If ``data`` holds no bars
        """
        self.validate_input(data)

        bars = self.prepare(data)
        if len(bars) == 0:
            raise ValueError("Cannot analyze an empty bar series")

        i = len(bars) - 1
        trend_status = self.major_trend_status(mtf_data)
        moving_averages = bars.indicators
        standard_bar = find_standard_bar(bars, moving_averages, end=i)
        node = calculate_reference_node(bars, standard_bar, end=i)

        n_wave_target = None
        if node is not None:
            n_wave_target = calculate_n_wave_target(node, min(bars.low[node.end_idx : i + 1]))
        e_wave_target = calculate_e_wave_target(node)

        return MarketSnapshot(
            decision=evaluate_bar(bars, i, trend_status, self.config),
            market=analyze_market(bars, moving_averages, end=i),
            standard_bar=standard_bar,
            node=node,
            reference_lines=find_reference_lines(bars, end=i),
            trend_status=trend_status,
            n_wave_target=n_wave_target,
            e_wave_target=e_wave_target,
            target_overlap=check_target_overlap(n_wave_target, e_wave_target),
        )

    def validate_input(self, data: PolarsDataFrame | PandasDataFrame) -> None:
        """
        Validate input data format.

        Raises:
            TypeError: If data is not a Polars or Pandas DataFrame
            ValueError: If data format is invalid, with specific error message
        """
        self.indicators.validate_input(data)


def major_trend_status(
    mtf_data: PolarsDataFrame | PandasDataFrame | None, config: EngineConfig | None = None
) -> TrendStatus | None:
    """Major-timeframe trend filter; None when the filter is inactive."""
    return SignalEngine(config).major_trend_status(mtf_data)


def generate_all_signals(
    data: PolarsDataFrame | PandasDataFrame,
    mtf_data: PolarsDataFrame | PandasDataFrame | None = None,
    timeframe: str = "1d",
    config: EngineConfig | None = None,
) -> EngineResult:
    """
    Run the walk-forward engine over ``data``.

    Args:
        data: Primary OHLCV bars sorted by timestamp
        mtf_data: Optional major-timeframe bars for the trend filter
        timeframe: Timeframe of ``data``, used when ``config`` is omitted
        config: Engine configuration; overrides ``timeframe``

    Returns:
        EngineResult with markers, backtest and reference lines
    """
    return SignalEngine(config or EngineConfig(timeframe=timeframe)).run(data, mtf_data)
