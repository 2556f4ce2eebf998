"""Subscription repository — SQLite CRUD for the subscriptions table."""

import sqlite3
from datetime import datetime
from typing import Optional

from signalhub.models.subscription import Subscription
from signalhub.repos.db import get_connection, utc_iso


def _row_to_subscription(row: sqlite3.Row) -> Subscription:
    return Subscription(
        subscriber_id=row["subscriber_id"],
        tier_slug=row["tier_slug"],
        destination=row["destination"],
        status=row["status"],
        period_start=row["period_start"],
        period_end=row["period_end"],
        signals_received_today=row["signals_received_today"],
        last_signal_date=row["last_signal_date"],
    )


class SubscriptionRepo:
    """Data access layer for subscriptions.

    One row per subscriber; subscribing again replaces the tier and period
    but keeps the daily counter.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def subscribe(
        self,
        subscriber_id: str,
        tier_slug: str,
        destination: Optional[str],
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Subscription:
        """Create or replace the subscription for *subscriber_id*."""
        now = utc_iso()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO subscriptions
                    (subscriber_id, tier_slug, destination, status,
                     period_start, period_end, created_at, updated_at)
                VALUES (?, ?, ?, 'active', ?, ?, ?, ?)
                ON CONFLICT (subscriber_id) DO UPDATE SET
                    tier_slug = excluded.tier_slug,
                    destination = excluded.destination,
                    status = 'active',
                    period_start = excluded.period_start,
                    period_end = excluded.period_end,
                    updated_at = excluded.updated_at
                """,
                (
                    subscriber_id, tier_slug, destination,
                    utc_iso(period_start) if period_start else None,
                    utc_iso(period_end) if period_end else None,
                    now, now,
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE subscriber_id = ?", (subscriber_id,)
            ).fetchone()
            return _row_to_subscription(row)
        finally:
            conn.close()

    def cancel(self, subscriber_id: str) -> bool:
        """Mark the subscription cancelled; ``False`` if none was active."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE subscriptions SET status = 'cancelled', updated_at = ?
                WHERE subscriber_id = ? AND status = 'active'
                """,
                (utc_iso(), subscriber_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def get(self, subscriber_id: str) -> Optional[Subscription]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE subscriber_id = ?", (subscriber_id,)
            ).fetchone()
            return _row_to_subscription(row) if row else None
        finally:
            conn.close()

    def list_active(self, now: Optional[datetime] = None) -> list[Subscription]:
        """Active subscriptions whose period contains *now*."""
        ts = utc_iso(now)
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE status = 'active'
                  AND (period_start IS NULL OR period_start <= ?)
                  AND (period_end IS NULL OR period_end > ?)
                ORDER BY subscriber_id
                """,
                (ts, ts),
            ).fetchall()
            return [_row_to_subscription(r) for r in rows]
        finally:
            conn.close()

    def count_by_tier(self) -> dict[str, int]:
        """Number of active subscriptions per tier slug."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT tier_slug, COUNT(*) AS n FROM subscriptions
                WHERE status = 'active' GROUP BY tier_slug
                """
            ).fetchall()
            return {r["tier_slug"]: r["n"] for r in rows}
        finally:
            conn.close()
