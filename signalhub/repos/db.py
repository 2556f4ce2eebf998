"""SQLite bootstrap: schema migrations, connections and timestamp format."""

import logging
import pathlib
import sqlite3
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("signalhub.db")

_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent.parent.parent / "db" / "migrations"


def _pending_migrations(applied: int) -> list[tuple[int, pathlib.Path]]:
    """Migration files numbered above *applied*, in order (``NNN_name.sql``)."""
    pending = []
    for path in sorted(_MIGRATION_DIR.glob("*.sql")):
        version = int(path.name.split("_", 1)[0])
        if version > applied:
            pending.append((version, path))
    return pending


def init_db(db_path: str) -> None:
    """Bring *db_path* up to the latest schema.

    Applied migrations are tracked in ``PRAGMA user_version`` so calling this
    on every boot only runs new files.
    """
    parent = pathlib.Path(db_path).parent
    if db_path != ":memory:" and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        applied = conn.execute("PRAGMA user_version").fetchone()[0]
        for version, path in _pending_migrations(applied):
            conn.executescript(path.read_text(encoding="utf-8"))
            conn.execute(f"PRAGMA user_version = {version}")
            logger.info("Applied migration %s", path.name)
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def utc_iso(when: Optional[datetime] = None) -> str:
    """Second-precision UTC timestamp; all stored times use this format."""
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).isoformat(timespec="seconds")
