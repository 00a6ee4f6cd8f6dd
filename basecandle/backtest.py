"""
Forward simulation of BUY markers against their own target and stop.

Outcomes are binary: a marker wins when a later bar's high reaches its target or the
timeframe profit threshold before any bar's low touches its stop. Everything else,
including a marker whose timestamp is not found and a horizon that runs out, is a
loss.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .base import BarSeries
from .schemas import BacktestConfig

if TYPE_CHECKING:
    from .signals import SignalMarker


@dataclass(frozen=True)
class BacktestResult:
    """Win-rate summary of the evaluated markers."""

    win_rate: float = 0.0
    total: int = 0
    wins: int = 0
    losses: int = 0


def _is_win(bars: BarSeries, start: int, target: float, stop: float, lookahead: int, threshold: float) -> bool:
    profit_level = bars.close[start] * (1 + threshold)
    for j in range(start + 1, min(start + lookahead, len(bars))):
        if bars.high[j] >= target or bars.high[j] >= profit_level:
            return True
        if bars.low[j] <= stop:
            return False
    return False


def perform_backtest(
    bars: BarSeries,
    markers: list["SignalMarker"],
    timeframe: str = "1d",
    config: BacktestConfig | None = None,
) -> BacktestResult:
    """
    Estimate the win rate of the most recent BUY markers.

    Only BUY markers carrying both a target and a stop are evaluated, at most the last
    ``config.max_markers``. Each is located by timestamp and scanned over bars
    ``start+1 .. start+lookahead-1``; the win condition is checked before the stop on
    the same bar.

    Args:
        bars: Bar history the markers were generated from
        markers: Markers in chronological order
        timeframe: Timeframe of ``bars`` (weekly uses the longer horizon and higher threshold)
        config: Backtest parameters; defaults to ``BacktestConfig()``

    Returns:
        BacktestResult with ``win_rate`` as a percentage rounded to one decimal
    """
    from .signals import Direction

    config = config or BacktestConfig()
    candidates = [
        marker
        for marker in markers
        if marker.direction == Direction.BUY and marker.target_price is not None and marker.stop_loss is not None
    ]
    test_set = candidates[-config.max_markers :]
    if not test_set:
        return BacktestResult()

    lookahead, threshold = config.horizon(timeframe)
    positions = {timestamp: index for index, timestamp in enumerate(bars.timestamp)}

    wins = 0
    for marker in test_set:
        start = positions.get(marker.timestamp)
        if start is None:
            logging.warning(f"Marker at {marker.timestamp} not found in bars; counted as a loss")
            continue
        if _is_win(bars, start, marker.target_price, marker.stop_loss, lookahead, threshold):
            wins += 1

    total = len(test_set)
    return BacktestResult(
        win_rate=round(wins / total * 100, 1),
        total=total,
        wins=wins,
        losses=total - wins,
    )
