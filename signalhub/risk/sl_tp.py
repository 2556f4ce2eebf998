"""Stop-loss and take-profit calculation — pure math, no I/O.

ATR-anchored approach (decision engine):
    SL and TP are ATR multiples keyed by the binding's risk level.
    TP2 / TP3 extend the TP1 distance by 1.5× and 2×.

Impact-anchored approach (news overlay):
    SL and TP are fractions of the event's expected pip move, keyed by
    the event impact, with a minimum SL distance per impact level.
"""

from dataclasses import dataclass

from signalhub.strategy.models import Direction, RiskLevel, pip_value_for, price_digits


@dataclass(frozen=True)
class RiskProfile:
    """ATR multiples and position size for one risk level."""

    sl_atr_mult: float
    tp_atr_mult: float
    size: float


RISK_PROFILES: dict[RiskLevel, RiskProfile] = {
    RiskLevel.LOW: RiskProfile(sl_atr_mult=2.5, tp_atr_mult=3.0, size=0.01),
    RiskLevel.MEDIUM: RiskProfile(sl_atr_mult=2.0, tp_atr_mult=2.5, size=0.03),
    RiskLevel.HIGH: RiskProfile(sl_atr_mult=1.5, tp_atr_mult=2.0, size=0.05),
    RiskLevel.AGGRESSIVE: RiskProfile(sl_atr_mult=1.2, tp_atr_mult=1.5, size=0.10),
}

# TP2 and TP3 as multiples of the TP1 distance
EXTENDED_TP_MULTIPLIERS: tuple[float, ...] = (1.5, 2.0)


@dataclass(frozen=True)
class NewsRiskProfile:
    """Fractions of the expected move used for news-driven SL/TP."""

    sl_fraction: float
    tp_fraction: float
    min_sl_pips: float


NEWS_RISK_PROFILES: dict[str, NewsRiskProfile] = {
    "HIGH": NewsRiskProfile(sl_fraction=0.5, tp_fraction=1.5, min_sl_pips=30),
    "MEDIUM": NewsRiskProfile(sl_fraction=0.6, tp_fraction=1.2, min_sl_pips=20),
    "LOW": NewsRiskProfile(sl_fraction=0.7, tp_fraction=1.0, min_sl_pips=15),
}


@dataclass
class RiskLevels:
    """Computed stop-loss, take-profit ladder and position size for a trade."""

    sl: float
    tps: tuple[float, ...]
    size: float
    sl_pips: float = 0.0
    tp_pips: float = 0.0


def resolve_risk_level(risk_level: str | RiskLevel) -> RiskLevel:
    """Coerce a label to ``RiskLevel``; unknown labels fall back to medium."""
    try:
        return RiskLevel(str(getattr(risk_level, "value", risk_level)).lower())
    except ValueError:
        return RiskLevel.MEDIUM


def _offset(entry_price: float, direction: Direction, distance: float, favourable: bool) -> float:
    sign = 1.0 if direction == Direction.BUY else -1.0
    if not favourable:
        sign = -sign
    return entry_price + sign * distance


def calculate_atr_levels(
    entry_price: float,
    direction: Direction,
    atr: float,
    risk_level: str | RiskLevel = RiskLevel.MEDIUM,
    symbol: str = "",
) -> RiskLevels:
    """Calculate ATR-multiple SL, TP1–TP3 and size for *risk_level*.

    - **Buy**:  SL = entry − sl_mult × ATR, TP1 = entry + tp_mult × ATR
    - **Sell**: SL = entry + sl_mult × ATR, TP1 = entry − tp_mult × ATR

    Raises:
        ValueError: If *atr* is not positive.
    """
    if atr <= 0:
        raise ValueError(f"atr must be positive, got {atr}")

    profile = RISK_PROFILES[resolve_risk_level(risk_level)]
    digits = price_digits(symbol) if symbol else 5

    sl_dist = profile.sl_atr_mult * atr
    tp_dist = profile.tp_atr_mult * atr
    distances = (tp_dist,) + tuple(tp_dist * m for m in EXTENDED_TP_MULTIPLIERS)

    sl = round(_offset(entry_price, direction, sl_dist, favourable=False), digits)
    tps = tuple(
        round(_offset(entry_price, direction, d, favourable=True), digits)
        for d in distances
    )
    return RiskLevels(sl=sl, tps=tps, size=profile.size)


def calculate_news_levels(
    entry_price: float,
    direction: Direction,
    expected_pips: float,
    impact: str,
    symbol: str,
    sl_tightening: float = 1.0,
) -> RiskLevels:
    """Calculate impact-tiered SL/TP around a news event.

    SL distance = max(min_sl_pips, expected_pips × sl_fraction) × *sl_tightening*
    TP distance = expected_pips × tp_fraction

    Args:
        entry_price: Current price.
        direction: Trade direction.
        expected_pips: Average pip move × volatility multiplier of the event.
        impact: ``"HIGH"``, ``"MEDIUM"`` or ``"LOW"`` (unknown → LOW).
        symbol: Instrument, used for pip size and price rounding.
        sl_tightening: Multiplier < 1 tightens the stop (pre-news mode).
    """
    profile = NEWS_RISK_PROFILES.get(impact, NEWS_RISK_PROFILES["LOW"])
    pip = pip_value_for(symbol)
    digits = price_digits(symbol)

    sl_pips = max(profile.min_sl_pips, expected_pips * profile.sl_fraction) * sl_tightening
    tp_pips = expected_pips * profile.tp_fraction

    sl = round(_offset(entry_price, direction, sl_pips * pip, favourable=False), digits)
    tp = round(_offset(entry_price, direction, tp_pips * pip, favourable=True), digits)
    return RiskLevels(sl=sl, tps=(tp,), size=0.01, sl_pips=sl_pips, tp_pips=tp_pips)
