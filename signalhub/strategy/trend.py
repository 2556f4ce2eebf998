"""Trend detection — candle-count momentum and EMA crossover state.

Provides two detectors used by the decision engine:
- ``detect_momentum()``: counts bullish vs bearish bodies over a short window.
- ``detect_ema_cross()``: fast/slow EMA relationship plus fresh-cross flags
  from the last two aligned EMA points.
"""

from dataclasses import dataclass
from typing import Literal, Sequence

from signalhub.strategy.indicators import calculate_ema
from signalhub.strategy.models import Candle


@dataclass(frozen=True)
class MomentumState:
    """Bullish/bearish candle counts over the lookback window."""

    bullish_count: int
    bearish_count: int
    lookback: int

    @property
    def majority(self) -> Literal["bullish", "bearish"]:
        """Majority direction; ties resolve bullish."""
        return "bullish" if self.bullish_count >= self.bearish_count else "bearish"


@dataclass(frozen=True)
class EMACrossState:
    """Snapshot of a fast/slow EMA pair on the latest bar."""

    ema_fast_value: float
    ema_slow_value: float
    crossed_up: bool
    crossed_down: bool

    @property
    def direction(self) -> Literal["bullish", "bearish", "flat"]:
        if self.ema_fast_value > self.ema_slow_value:
            return "bullish"
        if self.ema_fast_value < self.ema_slow_value:
            return "bearish"
        return "flat"


def detect_momentum(candles: Sequence[Candle], lookback: int = 5) -> MomentumState:
    """Count bullish (close > open) and bearish (close < open) candles.

    Dojis count as neither.  Fewer than *lookback* candles are counted
    as-is.
    """
    window = candles[-lookback:]
    bullish = sum(1 for c in window if c.close > c.open)
    bearish = sum(1 for c in window if c.close < c.open)
    return MomentumState(bullish_count=bullish, bearish_count=bearish, lookback=lookback)


def detect_ema_cross(
    candles: Sequence[Candle],
    ema_fast: int = 8,
    ema_slow: int = 20,
) -> EMACrossState:
    """Compare EMA(fast) and EMA(slow) on the last two bars.

    A cross-up means fast ≤ slow on the previous bar and fast > slow now;
    cross-down is the mirror.  Returns a flat state with no crosses when
    there is not enough history for two slow EMA points.
    """
    if len(candles) < ema_slow + 1:
        return EMACrossState(0.0, 0.0, False, False)

    closes = [c.close for c in candles]
    fast = calculate_ema(closes, ema_fast)
    slow = calculate_ema(closes, ema_slow)

    fast_now, fast_prev = fast[-1], fast[-2]
    slow_now, slow_prev = slow[-1], slow[-2]

    return EMACrossState(
        ema_fast_value=fast_now,
        ema_slow_value=slow_now,
        crossed_up=fast_now > slow_now and fast_prev <= slow_prev,
        crossed_down=fast_now < slow_now and fast_prev >= slow_prev,
    )
