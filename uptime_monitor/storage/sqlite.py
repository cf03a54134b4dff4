from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from uptime_monitor.errors import StoreError
from uptime_monitor.models import AlertLogEntry, ChannelKind, CheckResult, Incident


SCHEMA_VERSION = 1


def _to_ts(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return float(value.timestamp())


def _from_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing database_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


class SqliteDatabase:
    """One sqlite file holding the check log, incidents and the alert audit log."""

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self.conn = _connect(path)
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to open database path={path}: {exc}") from exc

    def close(self) -> None:
        self.conn.close()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(f"{type(exc).__name__}: {exc}") from exc

    def _ensure_schema(self) -> None:
        self.conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
        row = self.conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
        cur = int(row["v"]) if row and row["v"] else 0
        if cur >= SCHEMA_VERSION:
            return
        if cur == 0:
            self._apply_v1()
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),)
            )
            return
        raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")

    def _apply_v1(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS check_results (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              target_id TEXT NOT NULL,
              status TEXT NOT NULL, -- up|down
              response_time_ms INTEGER NOT NULL,
              status_code INTEGER,
              error_message TEXT,
              checked_at_ts REAL NOT NULL,
              worker_id TEXT NOT NULL
            );
            """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS incidents (
              id TEXT PRIMARY KEY,
              target_id TEXT NOT NULL,
              status TEXT NOT NULL, -- down|resolved
              started_at_ts REAL NOT NULL,
              resolved_at_ts REAL,
              duration_minutes INTEGER,
              description TEXT NOT NULL
            );
            """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS alert_log (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              tenant_id TEXT NOT NULL,
              target_id TEXT,
              incident_id TEXT,
              channel_kind TEXT NOT NULL,
              destination TEXT NOT NULL,
              message TEXT NOT NULL,
              sent_at_ts REAL NOT NULL,
              success INTEGER NOT NULL,
              error TEXT
            );
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_check_results_target_time ON check_results(target_id, checked_at_ts);"
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_incidents_target ON incidents(target_id, resolved_at_ts);")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_alert_log_tenant ON alert_log(tenant_id, sent_at_ts);")


def _row_to_result(row: sqlite3.Row) -> CheckResult:
    return CheckResult(
        target_id=str(row["target_id"]),
        status=str(row["status"]),
        response_time_ms=int(row["response_time_ms"]),
        checked_at=_from_ts(row["checked_at_ts"]),
        worker_id=str(row["worker_id"]),
        status_code=int(row["status_code"]) if row["status_code"] is not None else None,
        error_message=row["error_message"],
    )


def _row_to_incident(row: sqlite3.Row) -> Incident:
    return Incident(
        id=str(row["id"]),
        target_id=str(row["target_id"]),
        status=str(row["status"]),
        started_at=_from_ts(row["started_at_ts"]),
        resolved_at=_from_ts(row["resolved_at_ts"]),
        duration_minutes=int(row["duration_minutes"]) if row["duration_minutes"] is not None else None,
        description=str(row["description"]),
    )


class SqliteCheckLog:
    def __init__(self, db: SqliteDatabase) -> None:
        self.db = db

    def append(self, result: CheckResult) -> None:
        self.db.execute(
            "INSERT INTO check_results (target_id, status, response_time_ms, status_code, error_message, "
            "checked_at_ts, worker_id) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                result.target_id,
                result.status,
                int(result.response_time_ms),
                result.status_code,
                result.error_message,
                _to_ts(result.checked_at),
                result.worker_id,
            ),
        )

    def _row_id_of(self, result: CheckResult) -> int | None:
        row = self.db.execute(
            "SELECT id FROM check_results WHERE target_id=? AND checked_at_ts=? AND status=? AND worker_id=? "
            "AND response_time_ms=? AND status_code IS ? AND error_message IS ? ORDER BY id DESC LIMIT 1",
            (
                result.target_id,
                _to_ts(result.checked_at),
                result.status,
                result.worker_id,
                int(result.response_time_ms),
                result.status_code,
                result.error_message,
            ),
        ).fetchone()
        return int(row["id"]) if row else None

    def previous_result(self, result: CheckResult) -> CheckResult | None:
        ts = _to_ts(result.checked_at)
        row_id = self._row_id_of(result)
        if row_id is None:
            row = self.db.execute(
                "SELECT * FROM check_results WHERE target_id=? AND checked_at_ts <= ? "
                "ORDER BY checked_at_ts DESC, id DESC LIMIT 1",
                (result.target_id, ts),
            ).fetchone()
        else:
            row = self.db.execute(
                "SELECT * FROM check_results WHERE target_id=? "
                "AND (checked_at_ts < ? OR (checked_at_ts = ? AND id < ?)) "
                "ORDER BY checked_at_ts DESC, id DESC LIMIT 1",
                (result.target_id, ts, ts, row_id),
            ).fetchone()
        return _row_to_result(row) if row else None

    def latest(self, target_id: str) -> CheckResult | None:
        row = self.db.execute(
            "SELECT * FROM check_results WHERE target_id=? ORDER BY checked_at_ts DESC, id DESC LIMIT 1",
            (target_id,),
        ).fetchone()
        return _row_to_result(row) if row else None

    def results_for(self, target_id: str) -> list[CheckResult]:
        rows = self.db.execute(
            "SELECT * FROM check_results WHERE target_id=? ORDER BY checked_at_ts ASC, id ASC", (target_id,)
        ).fetchall()
        return [_row_to_result(r) for r in rows]

    def prune_before(self, cutoff: datetime) -> int:
        cur = self.db.execute("DELETE FROM check_results WHERE checked_at_ts < ?", (_to_ts(cutoff),))
        return int(cur.rowcount or 0)


class SqliteIncidentStore:
    def __init__(self, db: SqliteDatabase) -> None:
        self.db = db

    def create(self, incident: Incident) -> None:
        self.db.execute(
            "INSERT INTO incidents (id, target_id, status, started_at_ts, resolved_at_ts, duration_minutes, "
            "description) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                incident.id,
                incident.target_id,
                incident.status,
                _to_ts(incident.started_at),
                _to_ts(incident.resolved_at),
                incident.duration_minutes,
                incident.description,
            ),
        )

    def update(self, incident: Incident) -> None:
        cur = self.db.execute(
            "UPDATE incidents SET status=?, resolved_at_ts=?, duration_minutes=?, description=? WHERE id=?",
            (
                incident.status,
                _to_ts(incident.resolved_at),
                incident.duration_minutes,
                incident.description,
                incident.id,
            ),
        )
        if not cur.rowcount:
            raise StoreError(f"Unknown incident id: {incident.id}")

    def open_for(self, target_id: str) -> Incident | None:
        row = self.db.execute(
            "SELECT * FROM incidents WHERE target_id=? AND resolved_at_ts IS NULL "
            "ORDER BY started_at_ts DESC LIMIT 1",
            (target_id,),
        ).fetchone()
        return _row_to_incident(row) if row else None

    def incidents_for(self, target_id: str) -> list[Incident]:
        rows = self.db.execute(
            "SELECT * FROM incidents WHERE target_id=? ORDER BY started_at_ts ASC", (target_id,)
        ).fetchall()
        return [_row_to_incident(r) for r in rows]


class SqliteAlertLog:
    def __init__(self, db: SqliteDatabase) -> None:
        self.db = db

    def append(self, entry: AlertLogEntry) -> None:
        self.db.execute(
            "INSERT INTO alert_log (tenant_id, target_id, incident_id, channel_kind, destination, message, "
            "sent_at_ts, success, error) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.tenant_id,
                entry.target_id,
                entry.incident_id,
                entry.channel_kind.value,
                entry.destination,
                entry.message,
                _to_ts(entry.sent_at),
                1 if entry.success else 0,
                entry.error,
            ),
        )

    def entries_for(self, tenant_id: str) -> list[AlertLogEntry]:
        rows = self.db.execute(
            "SELECT * FROM alert_log WHERE tenant_id=? ORDER BY sent_at_ts ASC, id ASC", (tenant_id,)
        ).fetchall()
        return [
            AlertLogEntry(
                tenant_id=str(r["tenant_id"]),
                target_id=r["target_id"],
                incident_id=r["incident_id"],
                channel_kind=ChannelKind(str(r["channel_kind"])),
                destination=str(r["destination"]),
                message=str(r["message"]),
                sent_at=_from_ts(r["sent_at_ts"]),
                success=bool(r["success"]),
                error=r["error"],
            )
            for r in rows
        ]

    def prune_before(self, cutoff: datetime) -> int:
        cur = self.db.execute("DELETE FROM alert_log WHERE sent_at_ts < ?", (_to_ts(cutoff),))
        return int(cur.rowcount or 0)
