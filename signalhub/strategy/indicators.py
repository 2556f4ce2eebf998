"""Technical indicators — RSI, SMA, EMA, MACD, Bollinger, Stochastic, ADX, ATR.

Pure functions, no I/O.  Every function returns a neutral value on
insufficient data instead of raising, so a short candle history never
propagates an exception into the scan loop.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from signalhub.strategy.models import Candle


@dataclass(frozen=True)
class MACDResult:
    macd_line: float
    signal_line: float
    histogram: float
    bullish: bool


@dataclass(frozen=True)
class BollingerResult:
    upper: float
    middle: float
    lower: float
    position: str  # upper / upper-middle / middle / lower-middle / lower
    percent_b: float


@dataclass(frozen=True)
class StochasticResult:
    k: float
    d: float


# ── Moving averages ──────────────────────────────────────────────────────


def calculate_sma(data: Sequence[float], period: int) -> list[float]:
    """Simple moving average, same length as *data*.

    The first ``period - 1`` entries are the raw input values (no
    look-ahead).  Input shorter than *period* is returned unchanged.
    """
    values = list(data)
    if len(values) < period:
        return values

    result: list[float] = []
    for i, value in enumerate(values):
        if i < period - 1:
            result.append(value)
        else:
            window = values[i - period + 1 : i + 1]
            result.append(sum(window) / period)
    return result


def calculate_ema(data: Sequence[float], period: int) -> list[float]:
    """Exponential moving average.

    Seeded with the SMA of the first *period* points, then
    ``EMA = (value - prev) × k + prev`` with ``k = 2 / (period + 1)``.

    Returns ``len(data) - period + 1`` points: the series starts at the
    seed.  Input shorter than *period* is returned unchanged.
    """
    values = list(data)
    if len(values) < period:
        return values

    k = 2.0 / (period + 1)
    ema = [sum(values[:period]) / period]
    for value in values[period:]:
        ema.append((value - ema[-1]) * k + ema[-1])
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(closes: Sequence[float], period: int = 14) -> float:
    """Wilder's Relative Strength Index for the last close.

    Algorithm:
        1. delta = close[i] - close[i-1], split into gains and losses.
        2. Seed average gain/loss = SMA of the first *period* deltas.
        3. avg = (prev_avg × (period-1) + current) / period
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Returns exactly ``50.0`` when fewer than ``period + 1`` closes are given.
    """
    if len(closes) < period + 1:
        return 50.0

    gains: list[float] = []
    losses: list[float] = []
    for i in range(1, len(closes)):
        diff = closes[i] - closes[i - 1]
        gains.append(max(diff, 0.0))
        losses.append(abs(min(diff, 0.0)))

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    closes: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """Moving Average Convergence Divergence.

    MACD line = EMA(fast) − EMA(slow), right-aligned on the most recent
    close.  Signal line = EMA(signal) of the MACD line.
    """
    if len(closes) < slow:
        return MACDResult(0.0, 0.0, 0.0, False)

    ema_fast = calculate_ema(closes, fast)
    ema_slow = calculate_ema(closes, slow)
    # Both series end on the last close; trim the fast one to the slow length
    offset = len(ema_fast) - len(ema_slow)
    macd_line = [f - s for f, s in zip(ema_fast[offset:], ema_slow)]

    signal_line = calculate_ema(macd_line, signal)
    current_macd = macd_line[-1]
    current_signal = signal_line[-1]
    return MACDResult(
        macd_line=current_macd,
        signal_line=current_signal,
        histogram=current_macd - current_signal,
        bullish=current_macd > current_signal,
    )


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    closes: Sequence[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerResult:
    """Bollinger Bands over the trailing *period* closes.

    Middle = mean, upper/lower = mean ± *std_dev* × σ (population σ).
    ``position`` places the last close inside the bands; ``percent_b`` is
    ``(close - lower) / (upper - lower) × 100``.
    """
    if len(closes) < period:
        return BollingerResult(0.0, 0.0, 0.0, "middle", 50.0)

    window = list(closes[-period:])
    mean = sum(window) / period
    variance = sum((x - mean) ** 2 for x in window) / period
    sigma = math.sqrt(variance)

    upper = mean + std_dev * sigma
    lower = mean - std_dev * sigma
    price = closes[-1]

    if price >= upper:
        position = "upper"
    elif price <= lower:
        position = "lower"
    elif price > mean + sigma:
        position = "upper-middle"
    elif price < mean - sigma:
        position = "lower-middle"
    else:
        position = "middle"

    band_width = upper - lower
    percent_b = ((price - lower) / band_width) * 100.0 if band_width else 50.0

    return BollingerResult(upper, mean, lower, position, percent_b)


# ── Stochastic ───────────────────────────────────────────────────────────


def calculate_stochastic(
    candles: Sequence[Candle],
    period: int = 14,
    smooth_k: int = 3,
    smooth_d: int = 3,
) -> StochasticResult:
    """Stochastic oscillator (%K smoothed by SMA, %D = SMA of smoothed %K)."""
    if len(candles) < period:
        return StochasticResult(50.0, 50.0)

    raw_k: list[float] = []
    for i in range(period - 1, len(candles)):
        window = candles[i - period + 1 : i + 1]
        highest = max(c.high for c in window)
        lowest = min(c.low for c in window)
        if highest == lowest:
            raw_k.append(50.0)
        else:
            raw_k.append((candles[i].close - lowest) / (highest - lowest) * 100.0)

    k_line = calculate_sma(raw_k, smooth_k)
    d_line = calculate_sma(k_line, smooth_d)
    return StochasticResult(k=k_line[-1], d=d_line[-1])


# ── ATR ──────────────────────────────────────────────────────────────────


def _true_ranges(candles: Sequence[Candle]) -> list[float]:
    ranges: list[float] = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


def calculate_atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Average True Range — simple mean of the last *period* true ranges.

        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Returns ``0.0`` when fewer than ``period + 1`` candles are available.
    """
    if len(candles) < period + 1:
        return 0.0
    recent = _true_ranges(candles)[-period:]
    return sum(recent) / period


# ── ADX ──────────────────────────────────────────────────────────────────


def calculate_adx(candles: Sequence[Candle], period: int = 14) -> float:
    """Average Directional Index of the most recent bar.

    Algorithm:
        1. +DM / -DM directional movement and TR per bar.
        2. EMA-smooth +DM, -DM and TR over *period*.
        3. DX = 100 × |+DI − −DI| / (+DI + −DI)
        4. ADX = EMA of DX over *period*.

    Returns ``0.0`` with fewer than ``2 × period`` candles.
    """
    if len(candles) < period * 2:
        return 0.0

    plus_dm: list[float] = []
    minus_dm: list[float] = []
    for i in range(1, len(candles)):
        up_move = candles[i].high - candles[i - 1].high
        down_move = candles[i - 1].low - candles[i].low
        plus_dm.append(up_move if (up_move > down_move and up_move > 0) else 0.0)
        minus_dm.append(down_move if (down_move > up_move and down_move > 0) else 0.0)
    tr = _true_ranges(candles)

    smoothed_plus = calculate_ema(plus_dm, period)
    smoothed_minus = calculate_ema(minus_dm, period)
    smoothed_tr = calculate_ema(tr, period)

    dx: list[float] = []
    for s_pdm, s_mdm, s_tr in zip(smoothed_plus, smoothed_minus, smoothed_tr):
        if s_tr <= 0:
            dx.append(0.0)
            continue
        plus_di = 100.0 * s_pdm / s_tr
        minus_di = 100.0 * s_mdm / s_tr
        di_sum = plus_di + minus_di
        dx.append(100.0 * abs(plus_di - minus_di) / di_sum if di_sum > 0 else 0.0)

    adx = calculate_ema(dx, period)
    return adx[-1] if adx else 0.0


# ── Summary ──────────────────────────────────────────────────────────────


def _level_label(value: float, high: float, low: float) -> str:
    if value > high:
        return "Overbought"
    if value < low:
        return "Oversold"
    return "Neutral"


def indicator_snapshot(candles: Sequence[Candle]) -> Optional[dict]:
    """Summarise every indicator for the latest bar.

    Used by the dashboard endpoint and attached to published signals.
    Returns ``None`` with fewer than 30 candles.
    """
    if len(candles) < 30:
        return None

    closes = [c.close for c in candles]
    price = closes[-1]

    rsi = calculate_rsi(closes)
    macd = calculate_macd(closes)
    bands = calculate_bollinger(closes)
    stoch = calculate_stochastic(candles)
    adx = calculate_adx(candles)

    sma_window = closes[-200:]
    sma200 = sum(sma_window) / len(sma_window)
    above_sma = price > sma200

    return {
        "rsi": {"value": round(rsi), "signal": _level_label(rsi, 70, 30)},
        "macd": {
            "value": "Bullish" if macd.bullish else "Bearish",
            "histogram": macd.histogram,
            "bullish": macd.bullish,
        },
        "moving_average": {
            "value": "Above 200 SMA" if above_sma else "Below 200 SMA",
            "signal": "Bullish" if above_sma else "Bearish",
        },
        "bollinger": {
            "position": bands.position,
            "percent_b": bands.percent_b,
        },
        "stochastic": {
            "value": round(stoch.k),
            "signal": _level_label(stoch.k, 80, 20),
            "k": stoch.k,
            "d": stoch.d,
        },
        "adx": {
            "value": round(adx),
            "signal": "Trending" if adx > 25 else "Ranging",
        },
    }
