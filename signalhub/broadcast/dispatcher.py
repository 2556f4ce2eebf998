"""Delivery dispatcher — sends scheduled deliveries once they fall due.

Each claimed row is sent in its own task under a timeout, so a slow
destination never holds up the others.  Sends for one subscriber are
serialised by a per-subscriber lock; together with the conditional counter
update in ``DeliveryRepo.record_success`` this keeps the daily quota exact.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from signalhub.broadcast.channel import MessagingChannel
from signalhub.models.subscription import ScheduledDelivery, Tier
from signalhub.repos.db import utc_iso
from signalhub.repos.delivery_repo import DeliveryRepo
from signalhub.repos.subscription_repo import SubscriptionRepo

logger = logging.getLogger("signalhub.dispatcher")


class DeliveryDispatcher:
    """Polls ``scheduled_deliveries`` and sends what is due.

    Args:
        delivery_repo: Scheduled delivery storage.
        subscription_repo: Used to re-check the subscriber at send time.
        tiers: Tier reference configuration (for quotas).
        channel: Messaging channel.
        send_timeout: Seconds allowed per send.
        poll_interval: Seconds between sweeps in :meth:`run`.
        batch_size: Maximum rows claimed per sweep.
        broadcast_engine: Optional; when given, each sweep also catches up
            delayed tier-channel posts.
    """

    def __init__(
        self,
        delivery_repo: DeliveryRepo,
        subscription_repo: SubscriptionRepo,
        tiers: Iterable[Tier],
        channel: MessagingChannel,
        send_timeout: float = 10.0,
        poll_interval: float = 5.0,
        batch_size: int = 100,
        broadcast_engine=None,
    ) -> None:
        self._deliveries = delivery_repo
        self._subscriptions = subscription_repo
        self._tiers = {t.slug: t for t in tiers}
        self._channel = channel
        self._send_timeout = send_timeout
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._broadcast_engine = broadcast_engine
        # subscriber id -> (lock, tasks holding or awaiting it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def recover(self) -> int:
        """Requeue rows a previous process left in ``sending``."""
        count = self._deliveries.recover()
        if count:
            logger.warning("Recovered %d in-flight deliveries back to pending", count)
        return count

    async def run_due(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Claim and send every due delivery once.

        Returns counts of ``sent``, ``failed`` and ``skipped`` rows.
        """
        now = now or datetime.now(timezone.utc)
        claimed = self._deliveries.claim_due(now, limit=self._batch_size)
        outcomes = {"sent": 0, "failed": 0, "skipped": 0}
        if claimed:
            tasks = [asyncio.create_task(self._deliver(d, now)) for d in claimed]
            for result in await asyncio.gather(*tasks, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.error("Delivery task crashed: %s", result)
                    outcomes["failed"] += 1
                else:
                    outcomes[result] += 1
            logger.info(
                "Dispatch: %d sent, %d failed, %d skipped",
                outcomes["sent"], outcomes["failed"], outcomes["skipped"],
            )

        if self._broadcast_engine is not None:
            await self._broadcast_engine.post_due_channel_messages(now)
        return outcomes

    async def _deliver(self, delivery: ScheduledDelivery, now: datetime) -> str:
        sid = delivery.subscriber_id
        lock, users = self._locks.get(sid, (asyncio.Lock(), 0))
        self._locks[sid] = (lock, users + 1)
        try:
            async with lock:
                return await self._deliver_locked(delivery, now)
        finally:
            lock, users = self._locks[sid]
            if users == 1:
                del self._locks[sid]
            else:
                self._locks[sid] = (lock, users - 1)

    async def _deliver_locked(self, delivery: ScheduledDelivery, now: datetime) -> str:
        sub = self._subscriptions.get(delivery.subscriber_id)
        tier = self._tiers.get(delivery.tier_slug)
        if sub is None or sub.status != "active" or tier is None:
            self._deliveries.mark_skipped(delivery.id, "subscription inactive")
            return "skipped"
        if sub.period_end is not None and sub.period_end <= utc_iso(now):
            self._deliveries.mark_skipped(delivery.id, "subscription expired")
            return "skipped"
        if sub.tier_slug != delivery.tier_slug:
            self._deliveries.mark_skipped(delivery.id, "tier changed")
            return "skipped"

        day = now.date().isoformat()
        cap = tier.max_signals_per_day
        if cap is not None and sub.received_on(day) >= cap:
            self._deliveries.mark_skipped(delivery.id, "daily quota exhausted")
            return "skipped"

        try:
            ok = await asyncio.wait_for(
                self._channel.send(delivery.destination, delivery.message),
                self._send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Delivery %d to %s timed out", delivery.id, delivery.subscriber_id,
            )
            self._deliveries.mark_failed(delivery.id, "timeout")
            return "failed"
        except Exception as exc:
            logger.error(
                "Delivery %d to %s failed: %s", delivery.id, delivery.subscriber_id, exc,
            )
            self._deliveries.mark_failed(delivery.id, str(exc))
            return "failed"

        if not ok:
            self._deliveries.mark_failed(delivery.id, "channel rejected message")
            return "failed"

        recorded = self._deliveries.record_success(delivery, day, cap, delivered_at=now)
        return "sent" if recorded else "skipped"

    async def run(self) -> None:
        """Sweep until :meth:`stop` is called."""
        self._running = True
        self.recover()
        logger.info("Delivery dispatcher started (every %.1fs)", self._poll_interval)
        while self._running:
            try:
                await self.run_due()
            except Exception as exc:
                logger.error("Dispatch sweep failed: %s", exc)
            await asyncio.sleep(self._poll_interval)
        logger.info("Delivery dispatcher stopped")

    def stop(self) -> None:
        self._running = False
