"""Signal repository — SQLite CRUD for the signals table."""

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from signalhub.models.signal import Priority, Signal, SignalStatus
from signalhub.repos.db import get_connection, utc_iso
from signalhub.strategy.models import CandidateSignal

_WIN_STATUSES = (SignalStatus.TP1_HIT.value, SignalStatus.TP2_HIT.value, SignalStatus.TP3_HIT.value)


def _row_to_signal(row: sqlite3.Row) -> Signal:
    tps = tuple(
        row[k] for k in ("take_profit_1", "take_profit_2", "take_profit_3") if row[k] is not None
    )
    return Signal(
        id=row["id"],
        symbol=row["symbol"],
        direction=row["direction"],
        entry_price=row["entry_price"],
        stop_loss=row["stop_loss"],
        take_profits=tps,
        confidence=row["confidence"],
        timeframe=row["timeframe"],
        priority=Priority(row["priority"]),
        min_tier=row["min_tier"],
        source=row["source"],
        status=SignalStatus(row["status"]),
        result_pips=row["result_pips"],
        analysis=row["analysis"],
        risk_reward=row["risk_reward"],
        binding_name=row["binding_name"],
        created_at=row["created_at"],
        closed_at=row["closed_at"],
        indicators=json.loads(row["indicators"] or "{}"),
    )


class SignalRepo:
    """Data access layer for signal records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_signal(
        self,
        candidate: CandidateSignal,
        priority: Priority,
        min_tier: str,
        binding_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Signal:
        """Persist *candidate* with its priority and minimum tier in one row."""
        tps = list(candidate.take_profits[:3]) + [None] * (3 - len(candidate.take_profits[:3]))
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO signals
                    (symbol, direction, entry_price, stop_loss,
                     take_profit_1, take_profit_2, take_profit_3,
                     confidence, timeframe, priority, min_tier, source,
                     analysis, risk_reward, binding_name, indicators, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    candidate.symbol, candidate.direction.value,
                    candidate.entry_price, candidate.stop_loss,
                    tps[0], tps[1], tps[2],
                    candidate.confidence, candidate.timeframe,
                    Priority(priority).value, min_tier, candidate.source,
                    candidate.reason, candidate.risk_reward, binding_name,
                    json.dumps(candidate.indicators, default=str),
                    utc_iso(created_at),
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM signals WHERE id = ?", (cur.lastrowid,)).fetchone()
            return _row_to_signal(row)
        finally:
            conn.close()

    def set_status(
        self,
        signal_id: int,
        expected: SignalStatus,
        new: SignalStatus,
        result_pips: Optional[float] = None,
        closed_at: Optional[str] = None,
    ) -> bool:
        """Move *signal_id* from *expected* to *new*.

        Returns ``False`` when the stored status no longer equals
        *expected* (a concurrent update won).
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE signals
                SET status = ?, result_pips = COALESCE(?, result_pips), closed_at = ?
                WHERE id = ? AND status = ?
                """,
                (new.value, result_pips, closed_at, signal_id, expected.value),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_signal(self, signal_id: int) -> Optional[Signal]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute("SELECT * FROM signals WHERE id = ?", (signal_id,)).fetchone()
            return _row_to_signal(row) if row else None
        finally:
            conn.close()

    def list_signals(
        self,
        limit: int = 50,
        status: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> list[Signal]:
        """Return signals newest first, optionally filtered."""
        clauses: list[str] = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if symbol:
            clauses.append("symbol = ?")
            params.append(symbol)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM signals {where} ORDER BY created_at DESC, id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]
        finally:
            conn.close()

    def list_created_between(self, start: datetime, end: datetime) -> list[Signal]:
        """Signals created in ``[start, end]``, oldest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM signals
                WHERE created_at >= ? AND created_at <= ?
                ORDER BY created_at, id
                """,
                (utc_iso(start), utc_iso(end)),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]
        finally:
            conn.close()

    def get_stats(self, days: int = 30, now: Optional[datetime] = None) -> dict:
        """Aggregate performance over the last *days* days.

        Win rate counts take-profit outcomes against stop-loss outcomes;
        manually closed and active signals are excluded from it.
        """
        now = now or datetime.now(timezone.utc)
        since = utc_iso(now - timedelta(days=days))
        placeholders = ", ".join("?" for _ in _WIN_STATUSES)
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status IN ({placeholders}) THEN 1 ELSE 0 END) AS wins,
                    SUM(CASE WHEN status = 'sl_hit' THEN 1 ELSE 0 END) AS losses,
                    SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END) AS active,
                    COALESCE(SUM(result_pips), 0) AS total_pips,
                    AVG(result_pips) AS avg_pips
                FROM signals
                WHERE created_at >= ?
                """,
                (*_WIN_STATUSES, since),
            ).fetchone()
        finally:
            conn.close()

        wins = row["wins"] or 0
        losses = row["losses"] or 0
        decided = wins + losses
        return {
            "period_days": days,
            "total_signals": row["total"],
            "active": row["active"] or 0,
            "wins": wins,
            "losses": losses,
            "win_rate": round(wins / decided * 100, 1) if decided else 0.0,
            "total_pips": round(row["total_pips"], 1),
            "avg_pips": round(row["avg_pips"], 1) if row["avg_pips"] is not None else 0.0,
        }
