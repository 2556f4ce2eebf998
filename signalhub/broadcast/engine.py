"""Broadcast engine — turns signals into per-subscriber deliveries.

Publishing inserts the signal (priority and minimum tier in the same row)
and schedules one durable delivery per eligible subscriber, due at
publication time plus the tier's delay.  The ``DeliveryDispatcher`` sends
them.  Status updates re-notify only subscribers holding a receipt.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from signalhub.broadcast.channel import MessagingChannel
from signalhub.broadcast.entitlement import can_tier_access, min_tier_for_priority
from signalhub.broadcast.formatter import build_message, format_update_message
from signalhub.models.signal import (
    InvalidStatusTransition,
    Priority,
    Signal,
    SignalStatus,
    check_transition,
)
from signalhub.models.subscription import ScheduledDelivery, Tier
from signalhub.repos.db import utc_iso
from signalhub.repos.delivery_repo import DeliveryRepo
from signalhub.repos.signal_repo import SignalRepo
from signalhub.repos.subscription_repo import SubscriptionRepo
from signalhub.strategy.models import CandidateSignal

logger = logging.getLogger("signalhub.broadcast")

_TERMINAL = {SignalStatus.SL_HIT, SignalStatus.TP3_HIT, SignalStatus.CLOSED}

# Delayed tier channels are caught up by the dispatcher within this window
_CHANNEL_LOOKBACK = timedelta(days=1)


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class BroadcastEngine:
    """Entitlement-aware fan-out of signals.

    Args:
        signal_repo: Signal storage.
        subscription_repo: Subscription storage.
        delivery_repo: Scheduled deliveries, receipts and channel posts.
        tiers: Tier reference configuration.
        channel: Messaging channel used for tier channels and updates.
        send_timeout: Seconds allowed for a single outbound send.
    """

    def __init__(
        self,
        signal_repo: SignalRepo,
        subscription_repo: SubscriptionRepo,
        delivery_repo: DeliveryRepo,
        tiers: Iterable[Tier],
        channel: MessagingChannel,
        send_timeout: float = 10.0,
    ) -> None:
        self._signals = signal_repo
        self._subscriptions = subscription_repo
        self._deliveries = delivery_repo
        self._tiers = {t.slug: t for t in tiers}
        self._channel = channel
        self._send_timeout = send_timeout

    @property
    def tiers(self) -> dict[str, Tier]:
        return dict(self._tiers)

    # ── Publish / broadcast ──────────────────────────────────────────────

    async def publish(
        self,
        candidate: CandidateSignal,
        priority: Priority | str,
        binding_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Signal:
        """Persist *candidate* at *priority* and broadcast it."""
        now = _utc(now)
        priority = Priority(priority)
        signal = self._signals.insert_signal(
            candidate,
            priority=priority,
            min_tier=min_tier_for_priority(priority),
            binding_name=binding_name,
            created_at=now,
        )
        logger.info(
            "Signal #%d %s %s published at %s (min tier %s)",
            signal.id, signal.direction.upper(), signal.symbol,
            priority.value, signal.min_tier,
        )
        await self.broadcast(signal, now=now)
        return signal

    def eligible_tier(self, signal: Signal, tier_slug: str) -> Optional[Tier]:
        """Return the tier if it may receive *signal*, else ``None``."""
        tier = self._tiers.get(tier_slug)
        return tier if can_tier_access(tier, signal, self._tiers) else None

    async def broadcast(self, signal: Signal, now: Optional[datetime] = None) -> list[ScheduledDelivery]:
        """Schedule *signal* for every eligible subscriber.

        Broadcasting the same signal twice schedules nothing new.
        """
        now = _utc(now)
        day = now.date().isoformat()
        rows: list[dict] = []

        for sub in self._subscriptions.list_active(now):
            tier = self.eligible_tier(signal, sub.tier_slug)
            if tier is None:
                continue
            if not sub.destination:
                logger.debug("Subscriber %s has no destination; skipped", sub.subscriber_id)
                continue
            if tier.max_signals_per_day is not None and sub.received_on(day) >= tier.max_signals_per_day:
                logger.debug("Subscriber %s quota exhausted for %s", sub.subscriber_id, day)
                continue
            rows.append({
                "signal_id": signal.id,
                "subscriber_id": sub.subscriber_id,
                "tier_slug": tier.slug,
                "destination": sub.destination,
                "message": build_message(signal, tier),
                "due_at": utc_iso(now + timedelta(minutes=tier.delay_minutes)),
            })

        scheduled = self._deliveries.schedule(rows)
        logger.info("Signal #%d scheduled for %d subscriber(s)", signal.id, len(scheduled))

        await self.post_channel_messages([signal], now)
        return scheduled

    # ── Tier channels ────────────────────────────────────────────────────

    async def post_channel_messages(self, signals: Iterable[Signal], now: Optional[datetime] = None) -> int:
        """Post each signal once to every entitled tier channel whose delay has elapsed."""
        now = _utc(now)
        posted = 0
        for signal in signals:
            created = datetime.fromisoformat(signal.created_at) if signal.created_at else now
            for tier in self._tiers.values():
                if not tier.channel_id or self.eligible_tier(signal, tier.slug) is None:
                    continue
                if created + timedelta(minutes=tier.delay_minutes) > now:
                    continue
                if not self._deliveries.claim_channel_broadcast(signal.id, tier.slug, tier.channel_id):
                    continue
                ok = await self._send(tier.channel_id, build_message(signal, tier))
                self._deliveries.finish_channel_broadcast(signal.id, tier.slug, ok)
                if ok:
                    posted += 1
        return posted

    async def post_due_channel_messages(self, now: Optional[datetime] = None) -> int:
        """Catch up delayed tier channels for recently created signals."""
        now = _utc(now)
        recent = self._signals.list_created_between(now - _CHANNEL_LOOKBACK, now)
        return await self.post_channel_messages(recent, now)

    # ── Status updates ───────────────────────────────────────────────────

    async def update_status(
        self,
        signal_id: int,
        status: SignalStatus | str,
        result_pips: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Signal:
        """Advance a signal's status and notify its recipients.

        Raises:
            KeyError: unknown signal id.
            InvalidStatusTransition: the move is not a legal forward step.
        """
        new = SignalStatus(status)
        signal = self._signals.get_signal(signal_id)
        if signal is None:
            raise KeyError(signal_id)
        check_transition(signal.status, new)

        closed_at = utc_iso(now) if new in _TERMINAL else None
        if not self._signals.set_status(signal_id, signal.status, new, result_pips, closed_at):
            raise InvalidStatusTransition(f"Signal #{signal_id} changed concurrently")

        updated = self._signals.get_signal(signal_id)
        message = format_update_message(updated, new, result_pips)

        destinations = []
        for receipt in self._deliveries.receipts_for(signal_id):
            sub = self._subscriptions.get(receipt.subscriber_id)
            if sub and sub.destination:
                destinations.append(sub.destination)

        results = await asyncio.gather(*(self._send(d, message) for d in destinations))
        logger.info(
            "Signal #%d → %s; notified %d/%d recipient(s)",
            signal_id, new.value, sum(results), len(destinations),
        )
        return updated

    async def _send(self, destination: str, message: str) -> bool:
        try:
            return await asyncio.wait_for(self._channel.send(destination, message), self._send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to %s timed out after %.1fs", destination, self._send_timeout)
        except Exception as exc:
            logger.error("Send to %s failed: %s", destination, exc)
        return False
