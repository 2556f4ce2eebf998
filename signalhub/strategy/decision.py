"""Momentum decision engine.

Implements ``DecisionEngineProtocol``.  Turns a candle history into a
directional ``CandidateSignal`` with ATR-sized risk levels.

Flow:
    1. ATR(14) — abort on degenerate (zero-range) data.
    2. 5-candle momentum, 8/20 EMA cross, RSI(14).
    3. BUY rule, then SELL rule, then forced entry in the majority
       momentum direction at a fixed lower confidence.
    4. SL / TP1–TP3 / size from the binding's risk level.
"""

from typing import Optional, Sequence

from signalhub.risk.sl_tp import calculate_atr_levels, resolve_risk_level
from signalhub.strategy.indicators import calculate_atr, calculate_rsi
from signalhub.strategy.models import Candle, CandidateSignal, Direction, RiskLevel
from signalhub.strategy.trend import detect_ema_cross, detect_momentum

MIN_CANDLES = 20
BASE_CONFIDENCE = 60.0
MOMENTUM_BONUS = 15.0
CROSS_BONUS = 15.0
RSI_EXTREME_BONUS = 10.0
FORCED_CONFIDENCE = 45.0
RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
STRONG_MOMENTUM = 4  # of the last 5 candles


class MomentumDecisionEngine:
    """Momentum / EMA-cross / RSI-extreme decision rule.

    Args:
        forced_entry: When ``True`` (the product default) an ambiguous
            market still yields a low-confidence entry in the majority
            momentum direction instead of abstaining.
    """

    def __init__(self, forced_entry: bool = True) -> None:
        self.forced_entry = forced_entry
        self.last_insight: dict = {}

    def analyze(
        self,
        candles: Sequence[Candle],
        symbol: str,
        risk_level: str | RiskLevel = RiskLevel.MEDIUM,
        timeframe: str = "M15",
    ) -> Optional[CandidateSignal]:
        """Evaluate *candles* and return a candidate signal or ``None``."""
        self.last_insight = {"symbol": symbol, "result": None}

        if len(candles) < MIN_CANDLES:
            self.last_insight["result"] = "insufficient_data"
            return None

        atr = calculate_atr(candles, period=14)
        if atr == 0:
            self.last_insight["result"] = "zero_atr"
            return None

        closes = [c.close for c in candles]
        momentum = detect_momentum(candles, lookback=5)
        cross = detect_ema_cross(candles, ema_fast=8, ema_slow=20)
        rsi = calculate_rsi(closes, period=14)

        indicators = {
            "atr": atr,
            "rsi": rsi,
            "ema_fast": cross.ema_fast_value,
            "ema_slow": cross.ema_slow_value,
            "bullish_count": momentum.bullish_count,
            "bearish_count": momentum.bearish_count,
        }
        self.last_insight["indicators"] = indicators

        bullish_momentum = momentum.bullish_count >= STRONG_MOMENTUM
        bearish_momentum = momentum.bearish_count >= STRONG_MOMENTUM
        forced = False

        if bullish_momentum or cross.crossed_up or rsi < RSI_OVERSOLD:
            direction = Direction.BUY
            confidence, reasons = _score(
                momentum=bullish_momentum,
                momentum_label=f"Momentum({momentum.bullish_count}/5 bullish)",
                cross=cross.crossed_up,
                cross_label="EMA-Cross-Up",
                rsi_extreme=rsi < RSI_OVERSOLD,
                rsi_label=f"RSI-Oversold({rsi:.0f})",
            )
        elif bearish_momentum or cross.crossed_down or rsi > RSI_OVERBOUGHT:
            direction = Direction.SELL
            confidence, reasons = _score(
                momentum=bearish_momentum,
                momentum_label=f"Momentum({momentum.bearish_count}/5 bearish)",
                cross=cross.crossed_down,
                cross_label="EMA-Cross-Down",
                rsi_extreme=rsi > RSI_OVERBOUGHT,
                rsi_label=f"RSI-Overbought({rsi:.0f})",
            )
        elif self.forced_entry:
            direction = Direction.BUY if momentum.majority == "bullish" else Direction.SELL
            confidence = FORCED_CONFIDENCE
            reasons = [
                f"FORCED: {momentum.majority} majority "
                f"({momentum.bullish_count}B/{momentum.bearish_count}S)"
            ]
            forced = True
        else:
            self.last_insight["result"] = "no_setup"
            return None

        entry = closes[-1]
        levels = calculate_atr_levels(entry, direction, atr, risk_level, symbol)
        reason = f"{direction.value.upper()}: {' '.join(reasons)}"
        self.last_insight["result"] = "forced" if forced else "signal"

        return CandidateSignal(
            symbol=symbol,
            direction=direction,
            entry_price=entry,
            stop_loss=levels.sl,
            take_profits=levels.tps,
            confidence=confidence,
            size=levels.size,
            timeframe=timeframe,
            reason=reason,
            source="scheduler",
            forced=forced,
            indicators={**indicators, "risk_level": resolve_risk_level(risk_level).value},
        )


def _score(
    momentum: bool,
    momentum_label: str,
    cross: bool,
    cross_label: str,
    rsi_extreme: bool,
    rsi_label: str,
) -> tuple[float, list[str]]:
    """Additive confidence: base plus one bonus per trigger, capped at 100."""
    confidence = BASE_CONFIDENCE
    reasons: list[str] = []
    if momentum:
        confidence += MOMENTUM_BONUS
        reasons.append(momentum_label)
    if cross:
        confidence += CROSS_BONUS
        reasons.append(cross_label)
    if rsi_extreme:
        confidence += RSI_EXTREME_BONUS
        reasons.append(rsi_label)
    return min(confidence, 100.0), reasons


def analyze_market(
    candles: Sequence[Candle],
    symbol: str,
    risk_level: str | RiskLevel = RiskLevel.MEDIUM,
    timeframe: str = "M15",
) -> Optional[CandidateSignal]:
    """Run the default (forced-entry) momentum engine once."""
    return MomentumDecisionEngine().analyze(candles, symbol, risk_level, timeframe)
