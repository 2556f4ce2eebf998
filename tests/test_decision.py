"""Tests for the decision engine, trend detectors, SL/TP sizing and registry."""

import pytest

from signalhub.risk.sl_tp import (
    RISK_PROFILES,
    calculate_atr_levels,
    calculate_news_levels,
    resolve_risk_level,
)
from signalhub.strategy.base import DecisionEngineProtocol
from signalhub.strategy.decision import (
    FORCED_CONFIDENCE,
    MomentumDecisionEngine,
    analyze_market,
)
from signalhub.strategy.models import Candle, CandidateSignal, Direction, RiskLevel
from signalhub.strategy.registry import STRATEGY_REGISTRY, get_strategy
from signalhub.strategy.trend import detect_ema_cross, detect_momentum


# ── Candle fixtures ──────────────────────────────────────────────────────


def _make_candle(i: int, o: float, c: float, wick: float = 0.0002) -> Candle:
    return Candle(
        time=f"2025-03-03T{i // 4:02d}:{(i % 4) * 15:02d}:00Z",
        open=o,
        high=max(o, c) + wick,
        low=min(o, c) - wick,
        close=c,
    )


def _zigzag_then(tail_step: float, n_zigzag: int = 25, n_tail: int = 5) -> list[Candle]:
    """Alternating ±10 pip bars, then *n_tail* bars moving *tail_step* each.

    The zigzag keeps RSI near 50, so only the tail's momentum decides.
    """
    candles = []
    price = 1.1000
    for i in range(n_zigzag):
        step = 0.0010 if i % 2 == 0 else -0.0010
        candles.append(_make_candle(i, price, price + step))
        price += step
    for j in range(n_tail):
        candles.append(_make_candle(n_zigzag + j, price, price + tail_step))
        price += tail_step
    return candles


def _dojis(n: int = 30) -> list[Candle]:
    """Flat closes with non-zero range: no momentum, no cross, RSI 50, ATR > 0."""
    return [
        Candle(time=f"t{i}", open=1.5, high=1.501, low=1.499, close=1.5)
        for i in range(n)
    ]


# ── Trend detectors ──────────────────────────────────────────────────────


class TestTrend:
    def test_momentum_counts(self):
        state = detect_momentum(_zigzag_then(0.0003), lookback=5)
        assert state.bullish_count == 5
        assert state.bearish_count == 0
        assert state.majority == "bullish"

    def test_momentum_tie_resolves_bullish(self):
        state = detect_momentum(_dojis(), lookback=5)
        assert (state.bullish_count, state.bearish_count) == (0, 0)
        assert state.majority == "bullish"

    def test_ema_cross_flat_when_short(self):
        state = detect_ema_cross(_dojis(20), ema_fast=8, ema_slow=20)
        assert state.ema_fast_value == 0.0
        assert not state.crossed_up and not state.crossed_down

    def test_ema_cross_up_detected(self):
        # Long decline puts fast below slow; one big rally bar flips it
        candles = [_make_candle(i, 1.2000 - i * 0.0005, 1.2000 - (i + 1) * 0.0005) for i in range(30)]
        last = candles[-1].close
        candles.append(_make_candle(30, last, last + 0.0400))
        state = detect_ema_cross(candles)
        assert state.crossed_up is True
        assert state.direction == "bullish"


# ── Decision engine ──────────────────────────────────────────────────────


class TestDecisionEngine:
    def test_insufficient_candles(self):
        assert analyze_market(_zigzag_then(0.0003, n_zigzag=10, n_tail=5), "EUR_USD") is None

    def test_zero_atr_returns_none(self):
        candles = [Candle(time=f"t{i}", open=1.1, high=1.1, low=1.1, close=1.1) for i in range(30)]
        assert analyze_market(candles, "EUR_USD") is None

    def test_bullish_momentum_buy(self):
        candles = _zigzag_then(0.0003)
        signal = analyze_market(candles, "EUR_USD", risk_level="medium")

        assert isinstance(signal, CandidateSignal)
        assert signal.direction == Direction.BUY
        assert signal.confidence >= 75
        assert signal.forced is False
        assert signal.stop_loss < signal.entry_price < signal.take_profit
        assert signal.take_profits[0] < signal.take_profits[1] < signal.take_profits[2]
        assert signal.entry_price == candles[-1].close
        assert signal.size == RISK_PROFILES[RiskLevel.MEDIUM].size

    def test_bearish_momentum_sell(self):
        signal = analyze_market(_zigzag_then(-0.0003), "EUR_USD")

        assert signal is not None
        assert signal.direction == Direction.SELL
        assert signal.confidence >= 75
        assert signal.stop_loss > signal.entry_price > signal.take_profit

    def test_confidence_capped_at_100(self):
        signal = analyze_market(_zigzag_then(0.0003), "EUR_USD")
        assert signal.confidence <= 100

    def test_forced_entry_on_ambiguous_market(self):
        signal = analyze_market(_dojis(), "EUR_USD")

        assert signal is not None
        assert signal.forced is True
        assert signal.confidence == FORCED_CONFIDENCE
        assert signal.direction == Direction.BUY  # tie resolves bullish

    def test_forced_entry_disabled_abstains(self):
        engine = MomentumDecisionEngine(forced_entry=False)
        assert engine.analyze(_dojis(), "EUR_USD") is None
        assert engine.last_insight["result"] == "no_setup"

    def test_indicators_attached(self):
        signal = analyze_market(_zigzag_then(0.0003), "EUR_USD")
        for key in ("rsi", "atr", "ema_fast", "ema_slow", "bullish_count", "bearish_count"):
            assert key in signal.indicators

    def test_risk_level_changes_stop_distance(self):
        candles = _zigzag_then(0.0003)
        low = analyze_market(candles, "EUR_USD", risk_level="low")
        aggressive = analyze_market(candles, "EUR_USD", risk_level="aggressive")
        assert (low.entry_price - low.stop_loss) > (aggressive.entry_price - aggressive.stop_loss)
        assert low.size < aggressive.size

    def test_deterministic(self):
        candles = _zigzag_then(0.0003)
        assert analyze_market(candles, "EUR_USD") == analyze_market(candles, "EUR_USD")


# ── SL / TP ──────────────────────────────────────────────────────────────


class TestRiskLevels:
    def test_buy_levels_medium(self):
        levels = calculate_atr_levels(1.1000, Direction.BUY, 0.0010, "medium", "EUR_USD")
        assert levels.sl == pytest.approx(1.0980)
        assert levels.tps == pytest.approx((1.1025, 1.10375, 1.1050))
        assert levels.size == 0.03

    def test_sell_levels_mirror(self):
        levels = calculate_atr_levels(1.1000, Direction.SELL, 0.0010, "medium", "EUR_USD")
        assert levels.sl == pytest.approx(1.1020)
        assert levels.tps[0] == pytest.approx(1.0975)

    def test_unknown_risk_level_falls_back_to_medium(self):
        assert resolve_risk_level("yolo") == RiskLevel.MEDIUM
        levels = calculate_atr_levels(1.1000, Direction.BUY, 0.0010, "yolo")
        assert levels.size == RISK_PROFILES[RiskLevel.MEDIUM].size

    def test_non_positive_atr_rejected(self):
        with pytest.raises(ValueError):
            calculate_atr_levels(1.1000, Direction.BUY, 0.0, "medium")

    def test_news_levels_respect_min_stop(self):
        # HIGH impact, tiny expected move: SL floors at 30 pips
        levels = calculate_news_levels(1.1000, Direction.BUY, 10.0, "HIGH", "EUR_USD")
        assert levels.sl_pips == pytest.approx(30.0)
        assert levels.sl == pytest.approx(1.0970)
        assert levels.tps[0] == pytest.approx(1.1015)

    def test_news_levels_tightening(self):
        levels = calculate_news_levels(1.1000, Direction.SELL, 200.0, "HIGH", "EUR_USD", sl_tightening=0.75)
        assert levels.sl_pips == pytest.approx(75.0)
        assert levels.sl > 1.1000


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    def test_registered_engines_satisfy_protocol(self):
        for name in STRATEGY_REGISTRY:
            assert isinstance(get_strategy(name), DecisionEngineProtocol)

    def test_confirmed_variant_has_no_forced_entry(self):
        assert get_strategy("momentum_confirmed").forced_entry is False

    def test_unknown_strategy(self):
        with pytest.raises(KeyError, match="Unknown strategy"):
            get_strategy("nope")
