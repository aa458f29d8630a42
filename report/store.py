"""
SQLite storage for user alerts and their triggered records. WAL mode for
concurrent read/write.

Single file at report/data/alerts.db by default. Every owner-facing method is
scoped by owner_id; the evaluator reads across owners via active_alert_states().
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from scanner.models import Alert, AlertType, Direction, MarketRef, TriggeredAlert

DB_DIR = Path(__file__).parent / "data"
DB_PATH = DB_DIR / "alerts.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    market_ref TEXT NOT NULL,
    alert_type TEXT NOT NULL,
    direction TEXT NOT NULL,
    target_spread_pct REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_condition_met INTEGER,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    last_triggered_at REAL
);

CREATE INDEX IF NOT EXISTS idx_alerts_owner ON alerts(owner_id);
CREATE INDEX IF NOT EXISTS idx_alerts_active ON alerts(is_active);

CREATE TABLE IF NOT EXISTS triggered_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_id INTEGER NOT NULL,
    owner_id TEXT NOT NULL,
    triggered_at REAL NOT NULL,
    observed_spread_pct REAL NOT NULL,
    opportunity_id TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_triggered_owner ON triggered_alerts(owner_id, triggered_at);
CREATE INDEX IF NOT EXISTS idx_triggered_alert ON triggered_alerts(alert_id);
"""


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


def default_alert_type(ref: MarketRef) -> AlertType:
    if not ref.is_wildcard:
        return AlertType.MARKET_SPECIFIC
    if ref.category and ref.category != "all":
        return AlertType.CATEGORY_FILTER
    return AlertType.SPREAD_THRESHOLD


def _row_to_alert(row: dict[str, Any]) -> Alert:
    return Alert(
        id=row["id"],
        owner_id=row["owner_id"],
        market_ref=MarketRef.parse(row["market_ref"]),
        direction=Direction(row["direction"]),
        target_spread_pct=row["target_spread_pct"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        alert_type=AlertType(row["alert_type"]),
        last_triggered_at=row["last_triggered_at"],
        updated_at=row["updated_at"],
    )


def _row_to_triggered(row: dict[str, Any]) -> TriggeredAlert:
    return TriggeredAlert(
        id=row["id"],
        alert_id=row["alert_id"],
        owner_id=row["owner_id"],
        triggered_at=row["triggered_at"],
        observed_spread_pct=row["observed_spread_pct"],
        opportunity_id=row["opportunity_id"],
    )


class AlertStore:
    """Thread-safe SQLite store for alerts and triggered records."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            DB_DIR.mkdir(parents=True, exist_ok=True)
        self._db_path = str(db_path or DB_PATH)
        self._local = threading.local()
        self._init_schema()

    @property
    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.row_factory = _dict_factory
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
        return conn

    def _init_schema(self) -> None:
        conn = self._conn
        conn.executescript(_SCHEMA)
        conn.commit()

    def begin_transaction(self) -> None:
        """Begin a write transaction, holding the write lock from the start."""
        if not self._conn.in_transaction:
            self._conn.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit the current transaction if active."""
        if self._conn.in_transaction:
            self._conn.commit()

    def rollback(self) -> None:
        """Rollback the current transaction if active."""
        if self._conn.in_transaction:
            self._conn.rollback()

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ── Alerts ──

    def create_alert(
        self,
        owner_id: str,
        market_ref: MarketRef,
        direction: Direction,
        target_spread_pct: float,
        is_active: bool = True,
        alert_type: AlertType | None = None,
    ) -> Alert:
        if not owner_id:
            raise ValueError("owner_id is required")
        now = time.time()
        cur = self._conn.execute(
            """INSERT INTO alerts
               (owner_id, market_ref, alert_type, direction, target_spread_pct,
                is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                owner_id,
                market_ref.to_str(),
                (alert_type or default_alert_type(market_ref)).value,
                direction.value,
                target_spread_pct,
                int(is_active),
                now,
                now,
            ),
        )
        self._conn.commit()
        alert = self.get_alert(owner_id, cur.lastrowid)  # type: ignore[arg-type]
        if alert is None:
            raise sqlite3.DatabaseError(f"alert {cur.lastrowid} vanished after insert")
        return alert

    def get_alert(self, owner_id: str, alert_id: int) -> Alert | None:
        row = self._conn.execute(
            "SELECT * FROM alerts WHERE id = ? AND owner_id = ?", (alert_id, owner_id),
        ).fetchone()
        return _row_to_alert(row) if row else None

    def list_alerts(self, owner_id: str, active_only: bool = False) -> list[Alert]:
        sql = "SELECT * FROM alerts WHERE owner_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at DESC, id DESC"
        return [_row_to_alert(r) for r in self._conn.execute(sql, (owner_id,)).fetchall()]

    def update_alert(
        self,
        owner_id: str,
        alert_id: int,
        *,
        is_active: bool | None = None,
        target_spread_pct: float | None = None,
        direction: Direction | None = None,
    ) -> Alert | None:
        """Partial update. Changing the condition resets the edge-trigger state."""
        sets: list[str] = []
        params: list[Any] = []
        if is_active is not None:
            sets.append("is_active = ?")
            params.append(int(is_active))
        if target_spread_pct is not None or direction is not None:
            sets.append("last_condition_met = NULL")
        if target_spread_pct is not None:
            sets.append("target_spread_pct = ?")
            params.append(target_spread_pct)
        if direction is not None:
            sets.append("direction = ?")
            params.append(direction.value)
        if not sets:
            return self.get_alert(owner_id, alert_id)
        sets.append("updated_at = ?")
        params.append(time.time())
        cur = self._conn.execute(
            f"UPDATE alerts SET {', '.join(sets)} WHERE id = ? AND owner_id = ?",
            (*params, alert_id, owner_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_alert(owner_id, alert_id)

    def toggle_alert(self, owner_id: str, alert_id: int) -> Alert | None:
        alert = self.get_alert(owner_id, alert_id)
        if alert is None:
            return None
        return self.update_alert(owner_id, alert_id, is_active=not alert.is_active)

    def delete_alert(self, owner_id: str, alert_id: int) -> bool:
        """Delete an alert and all of its triggered records. Atomic."""
        try:
            self.begin_transaction()
            cur = self._conn.execute(
                "DELETE FROM alerts WHERE id = ? AND owner_id = ?", (alert_id, owner_id),
            )
            if cur.rowcount:
                self._conn.execute("DELETE FROM triggered_alerts WHERE alert_id = ?", (alert_id,))
            self.commit()
        except sqlite3.Error:
            self.rollback()
            raise
        return cur.rowcount > 0

    # ── Evaluator state ──

    def active_alert_states(self) -> list[tuple[Alert, bool | None]]:
        """All active alerts across owners, with the condition seen at last evaluation."""
        rows = self._conn.execute(
            "SELECT * FROM alerts WHERE is_active = 1 ORDER BY id",
        ).fetchall()
        return [
            (_row_to_alert(r), None if r["last_condition_met"] is None else bool(r["last_condition_met"]))
            for r in rows
        ]

    def record_condition(self, alert_id: int, condition_met: bool, *, commit: bool = True) -> None:
        self._conn.execute(
            "UPDATE alerts SET last_condition_met = ? WHERE id = ?",
            (int(condition_met), alert_id),
        )
        if commit:
            self._conn.commit()

    def insert_triggered(
        self,
        alert: Alert,
        observed_spread_pct: float,
        opportunity_id: str = "",
        triggered_at: float | None = None,
        *,
        commit: bool = True,
    ) -> TriggeredAlert:
        """Append a triggered record and stamp the alert's last_triggered_at."""
        ts = time.time() if triggered_at is None else triggered_at
        cur = self._conn.execute(
            """INSERT INTO triggered_alerts
               (alert_id, owner_id, triggered_at, observed_spread_pct, opportunity_id)
               VALUES (?, ?, ?, ?, ?)""",
            (alert.id, alert.owner_id, ts, observed_spread_pct, opportunity_id),
        )
        self._conn.execute(
            "UPDATE alerts SET last_triggered_at = ? WHERE id = ?", (ts, alert.id),
        )
        if commit:
            self._conn.commit()
        return TriggeredAlert(
            id=cur.lastrowid,  # type: ignore[arg-type]
            alert_id=alert.id,
            owner_id=alert.owner_id,
            triggered_at=ts,
            observed_spread_pct=observed_spread_pct,
            opportunity_id=opportunity_id,
        )

    # ── Triggered records ──

    def list_triggered(
        self,
        owner_id: str,
        alert_id: int | None = None,
        limit: int = 100,
    ) -> list[TriggeredAlert]:
        sql = "SELECT * FROM triggered_alerts WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if alert_id is not None:
            sql += " AND alert_id = ?"
            params.append(alert_id)
        sql += " ORDER BY triggered_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [_row_to_triggered(r) for r in self._conn.execute(sql, params).fetchall()]

    def dismiss_triggered(self, owner_id: str, triggered_id: int) -> bool:
        cur = self._conn.execute(
            "DELETE FROM triggered_alerts WHERE id = ? AND owner_id = ?", (triggered_id, owner_id),
        )
        self._conn.commit()
        return cur.rowcount > 0
