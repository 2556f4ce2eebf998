"""Signal data models — the persisted artifact produced by a scan.

A ``Signal`` is created once with its priority and minimum tier and then
only moves forward through its status lifecycle.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VIP = "VIP"
    EXCLUSIVE = "EXCLUSIVE"


class SignalStatus(str, Enum):
    ACTIVE = "active"
    TP1_HIT = "tp1_hit"
    TP2_HIT = "tp2_hit"
    TP3_HIT = "tp3_hit"
    SL_HIT = "sl_hit"
    CLOSED = "closed"


class InvalidStatusTransition(ValueError):
    """Raised when a status update would move a signal backwards."""


# Allowed forward moves; anything not listed is rejected
_TRANSITIONS: dict[SignalStatus, frozenset[SignalStatus]] = {
    SignalStatus.ACTIVE: frozenset({
        SignalStatus.TP1_HIT, SignalStatus.TP2_HIT, SignalStatus.TP3_HIT,
        SignalStatus.SL_HIT, SignalStatus.CLOSED,
    }),
    SignalStatus.TP1_HIT: frozenset({SignalStatus.TP2_HIT, SignalStatus.TP3_HIT, SignalStatus.CLOSED}),
    SignalStatus.TP2_HIT: frozenset({SignalStatus.TP3_HIT, SignalStatus.CLOSED}),
    SignalStatus.TP3_HIT: frozenset(),
    SignalStatus.SL_HIT: frozenset(),
    SignalStatus.CLOSED: frozenset(),
}


def can_transition(current: SignalStatus, new: SignalStatus) -> bool:
    """Return True if *current* → *new* is a legal forward move."""
    return new in _TRANSITIONS[current]


def check_transition(current: SignalStatus, new: SignalStatus) -> None:
    """Raise ``InvalidStatusTransition`` unless *current* → *new* is legal."""
    if not can_transition(current, new):
        raise InvalidStatusTransition(
            f"Cannot move signal from '{current.value}' to '{new.value}'"
        )


@dataclass(frozen=True)
class Signal:
    """A published trading signal."""

    id: int
    symbol: str
    direction: str  # "buy" or "sell"
    entry_price: float
    stop_loss: float
    take_profits: tuple[float, ...]
    confidence: float
    timeframe: str
    priority: Priority
    min_tier: str
    source: str  # "scheduler" or "news_overlay"
    status: SignalStatus = SignalStatus.ACTIVE
    result_pips: Optional[float] = None
    analysis: str = ""
    risk_reward: Optional[float] = None
    binding_name: Optional[str] = None
    created_at: str = ""
    closed_at: Optional[str] = None
    indicators: dict = field(default_factory=dict)

    @property
    def take_profit(self) -> float:
        return self.take_profits[0]
