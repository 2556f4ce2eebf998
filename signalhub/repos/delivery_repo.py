"""Delivery repository — scheduled deliveries, receipts and channel posts.

``scheduled_deliveries`` is the durable timer: a row per (signal,
subscriber) due at publication time plus the tier delay.
``signal_deliveries`` holds the immutable receipts.  The receipt insert and
the subscriber's daily counter move together in ``record_success``.
"""

import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from signalhub.models.subscription import Delivery, ScheduledDelivery
from signalhub.repos.db import get_connection, utc_iso


def _row_to_scheduled(row: sqlite3.Row) -> ScheduledDelivery:
    return ScheduledDelivery(
        id=row["id"],
        signal_id=row["signal_id"],
        subscriber_id=row["subscriber_id"],
        tier_slug=row["tier_slug"],
        destination=row["destination"],
        message=row["message"],
        due_at=row["due_at"],
        status=row["status"],
        attempts=row["attempts"],
        last_error=row["last_error"],
    )


class DeliveryRepo:
    """Data access layer for deliveries.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Scheduling ───────────────────────────────────────────────────────

    def schedule(self, rows: Iterable[dict]) -> list[ScheduledDelivery]:
        """Insert scheduled deliveries, ignoring (signal, subscriber) repeats.

        Each dict carries ``signal_id, subscriber_id, tier_slug,
        destination, message, due_at``.  Returns only the rows actually
        inserted.
        """
        now = utc_iso()
        created: list[ScheduledDelivery] = []
        conn = get_connection(self._db_path)
        try:
            for r in rows:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO scheduled_deliveries
                        (signal_id, subscriber_id, tier_slug, destination,
                         message, due_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        r["signal_id"], r["subscriber_id"], r["tier_slug"],
                        r["destination"], r["message"], r["due_at"], now, now,
                    ),
                )
                if cur.rowcount == 1:
                    row = conn.execute(
                        "SELECT * FROM scheduled_deliveries WHERE id = ?", (cur.lastrowid,)
                    ).fetchone()
                    created.append(_row_to_scheduled(row))
            conn.commit()
            return created
        finally:
            conn.close()

    def claim_due(self, now: Optional[datetime] = None, limit: int = 100) -> list[ScheduledDelivery]:
        """Move due ``pending`` rows to ``sending`` and return them.

        A row is claimed only if it was still ``pending`` at update time, so
        two dispatchers never send the same row.
        """
        ts = utc_iso(now)
        claimed: list[ScheduledDelivery] = []
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT id FROM scheduled_deliveries
                WHERE status = 'pending' AND due_at <= ?
                ORDER BY due_at, id LIMIT ?
                """,
                (ts, limit),
            ).fetchall()
            for r in rows:
                cur = conn.execute(
                    """
                    UPDATE scheduled_deliveries
                    SET status = 'sending', attempts = attempts + 1, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (ts, r["id"]),
                )
                if cur.rowcount == 1:
                    row = conn.execute(
                        "SELECT * FROM scheduled_deliveries WHERE id = ?", (r["id"],)
                    ).fetchone()
                    claimed.append(_row_to_scheduled(row))
            conn.commit()
            return claimed
        finally:
            conn.close()

    def recover(self) -> int:
        """Return rows stranded in ``sending`` (process died mid-send) to ``pending``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE scheduled_deliveries SET status = 'pending', updated_at = ?
                WHERE status = 'sending'
                """,
                (utc_iso(),),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    # ── Outcomes ─────────────────────────────────────────────────────────

    def record_success(
        self,
        delivery: ScheduledDelivery,
        day: str,
        max_per_day: Optional[int],
        delivered_at: Optional[datetime] = None,
    ) -> bool:
        """Write the receipt and charge the subscriber's quota atomically.

        The counter update only applies while the subscriber is under
        *max_per_day* for *day* (or has no cap); otherwise the whole
        transaction rolls back and the row is marked ``skipped``.
        Returns ``True`` when the receipt was written.
        """
        ts = utc_iso(delivered_at)
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO signal_deliveries
                    (signal_id, subscriber_id, tier_slug, delivered_at)
                VALUES (?, ?, ?, ?)
                """,
                (delivery.signal_id, delivery.subscriber_id, delivery.tier_slug, ts),
            )
            if cur.rowcount == 0:
                conn.rollback()
                self._finish(conn, delivery.id, "skipped", "already delivered")
                return False

            cur = conn.execute(
                """
                UPDATE subscriptions
                SET signals_received_today = CASE
                        WHEN last_signal_date = ? THEN signals_received_today + 1
                        ELSE 1
                    END,
                    last_signal_date = ?,
                    updated_at = ?
                WHERE subscriber_id = ?
                  AND (? IS NULL
                       OR last_signal_date IS NOT ?
                       OR signals_received_today < ?)
                """,
                (day, day, ts, delivery.subscriber_id, max_per_day, day, max_per_day),
            )
            if cur.rowcount == 0:
                conn.rollback()
                self._finish(conn, delivery.id, "skipped", "daily quota exhausted")
                return False

            conn.execute(
                """
                UPDATE scheduled_deliveries SET status = 'sent', last_error = NULL, updated_at = ?
                WHERE id = ?
                """,
                (ts, delivery.id),
            )
            conn.commit()
            return True
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def mark_failed(self, delivery_id: int, error: str) -> None:
        conn = get_connection(self._db_path)
        try:
            self._finish(conn, delivery_id, "failed", error)
        finally:
            conn.close()

    def mark_skipped(self, delivery_id: int, reason: str) -> None:
        conn = get_connection(self._db_path)
        try:
            self._finish(conn, delivery_id, "skipped", reason)
        finally:
            conn.close()

    @staticmethod
    def _finish(conn: sqlite3.Connection, delivery_id: int, status: str, error: Optional[str]) -> None:
        conn.execute(
            """
            UPDATE scheduled_deliveries SET status = ?, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, error, utc_iso(), delivery_id),
        )
        conn.commit()

    # ── Queries ──────────────────────────────────────────────────────────

    def receipts_for(self, signal_id: int) -> list[Delivery]:
        """Every subscriber who actually received *signal_id*."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM signal_deliveries WHERE signal_id = ? ORDER BY id",
                (signal_id,),
            ).fetchall()
            return [
                Delivery(
                    signal_id=r["signal_id"],
                    subscriber_id=r["subscriber_id"],
                    tier_slug=r["tier_slug"],
                    delivered_at=r["delivered_at"],
                )
                for r in rows
            ]
        finally:
            conn.close()

    def scheduled_for(self, signal_id: int) -> list[ScheduledDelivery]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM scheduled_deliveries WHERE signal_id = ? ORDER BY id",
                (signal_id,),
            ).fetchall()
            return [_row_to_scheduled(r) for r in rows]
        finally:
            conn.close()

    def count_by_status(self) -> dict[str, int]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM scheduled_deliveries GROUP BY status"
            ).fetchall()
            return {r["status"]: r["n"] for r in rows}
        finally:
            conn.close()

    # ── Tier channels ────────────────────────────────────────────────────

    def claim_channel_broadcast(self, signal_id: int, tier_slug: str, channel_id: str) -> bool:
        """Reserve the one channel post for (signal, tier); ``False`` if already taken."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO channel_broadcasts (signal_id, tier_slug, channel_id, sent_at)
                VALUES (?, ?, ?, ?)
                """,
                (signal_id, tier_slug, channel_id, utc_iso()),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def finish_channel_broadcast(self, signal_id: int, tier_slug: str, ok: bool) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                UPDATE channel_broadcasts SET status = ?, sent_at = ?
                WHERE signal_id = ? AND tier_slug = ?
                """,
                ("sent" if ok else "failed", utc_iso(), signal_id, tier_slug),
            )
            conn.commit()
        finally:
            conn.close()
