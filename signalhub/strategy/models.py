"""Strategy data models — typed representations for strategy inputs and outputs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar, oldest-first in any sequence."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


class Direction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class CandidateSignal:
    """A directional trade idea produced by the decision engine or news overlay.

    Not yet persisted: the broadcast engine turns it into a ``Signal`` with
    an id, priority and minimum tier.
    """

    symbol: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profits: tuple[float, ...]
    confidence: float
    size: float
    timeframe: str
    reason: str
    source: str = "scheduler"  # "scheduler" or "news_overlay"
    forced: bool = False
    pre_news: bool = False
    indicators: dict = field(default_factory=dict)

    @property
    def take_profit(self) -> float:
        """First take-profit level (the one sent to the execution venue)."""
        return self.take_profits[0]

    @property
    def risk_reward(self) -> Optional[float]:
        """Reward-to-risk ratio against TP1, or ``None`` on zero risk."""
        risk = abs(self.entry_price - self.stop_loss)
        if risk == 0:
            return None
        return round(abs(self.take_profit - self.entry_price) / risk, 2)


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_PIP_VALUES: dict[str, float] = {
    "EUR_USD": 0.0001,
    "GBP_USD": 0.0001,
    "USD_JPY": 0.01,
    "USD_CHF": 0.0001,
    "AUD_USD": 0.0001,
    "NZD_USD": 0.0001,
    "USD_CAD": 0.0001,
    "XAU_USD": 0.01,
    "XAG_USD": 0.001,
}


def pip_value_for(symbol: str) -> float:
    """Return the pip size for *symbol* (JPY crosses default to 0.01)."""
    if symbol in INSTRUMENT_PIP_VALUES:
        return INSTRUMENT_PIP_VALUES[symbol]
    return 0.01 if "JPY" in symbol else 0.0001


def split_symbol(symbol: str) -> tuple[str, str]:
    """Split ``EUR_USD`` (or ``EURUSD``) into its base and quote currencies."""
    compact = symbol.replace("_", "").replace("/", "").upper()
    return compact[:3], compact[3:6]


def price_digits(symbol: str) -> int:
    """Decimal places used when rounding prices for *symbol*."""
    if "XAU" in symbol or "XAG" in symbol:
        return 2
    if "JPY" in symbol:
        return 3
    return 5
