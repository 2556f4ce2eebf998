"""Subscription data models — tiers, subscriptions and delivery records."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Tier:
    """A subscription level with its entitlements.

    Tiers are static reference configuration.  ``rank`` orders tiers from
    lowest (0) to highest.
    """

    slug: str
    name: str
    rank: int
    allowed_priorities: frozenset[str]
    delay_minutes: int = 0
    max_signals_per_day: Optional[int] = None  # None = unlimited
    includes_sl_tp: bool = True
    includes_analysis: bool = False
    includes_vip_channel: bool = False
    channel_id: Optional[str] = None  # shared tier channel, if any


@dataclass(frozen=True)
class Subscription:
    """One subscriber's current subscription."""

    subscriber_id: str
    tier_slug: str
    destination: Optional[str]
    status: str = "active"
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    signals_received_today: int = 0
    last_signal_date: Optional[str] = None  # ISO date (UTC)

    def received_on(self, day: str) -> int:
        """Signals counted against *day* (0 on a new calendar day)."""
        if self.last_signal_date != day:
            return 0
        return self.signals_received_today


@dataclass(frozen=True)
class Delivery:
    """Immutable receipt: one subscriber received one signal."""

    signal_id: int
    subscriber_id: str
    tier_slug: str
    delivered_at: str


@dataclass(frozen=True)
class ScheduledDelivery:
    """A durable, time-deferred delivery awaiting dispatch."""

    id: int
    signal_id: int
    subscriber_id: str
    tier_slug: str
    destination: str
    message: str
    due_at: str
    status: str = "pending"  # pending / sending / sent / failed / skipped
    attempts: int = 0
    last_error: Optional[str] = None
