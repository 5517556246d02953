from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from website_monitor.common_check import CheckResult


SCHEMA_VERSION = 1


def utc_unix() -> int:
    return int(time.time())


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).expanduser().parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL is best-effort; some filesystems refuse it.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return
    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return
    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS runs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          started_utc_unix INTEGER NOT NULL,
          finished_utc_unix INTEGER,
          host TEXT NOT NULL,
          app_version TEXT NOT NULL,
          app_name TEXT NOT NULL,
          environment TEXT NOT NULL,
          overall_status TEXT, -- OK|CRITICAL_FAILED
          exit_code INTEGER
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS check_results (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          run_id INTEGER NOT NULL REFERENCES runs(id),
          evaluated_utc_unix INTEGER NOT NULL,
          check_id TEXT NOT NULL,
          check_name TEXT NOT NULL,
          url TEXT NOT NULL,
          method TEXT NOT NULL,
          severity TEXT NOT NULL,
          succeeded INTEGER NOT NULL,
          warning_only INTEGER NOT NULL,
          status_code INTEGER,
          latency_ms INTEGER,
          redirect_count INTEGER NOT NULL,
          response_bytes INTEGER,
          cert_days_remaining INTEGER,
          error TEXT
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS check_state (
          check_id TEXT PRIMARY KEY,
          last_succeeded INTEGER NOT NULL,
          last_changed_utc_unix INTEGER NOT NULL,
          failure_streak INTEGER NOT NULL,
          last_notified_failure_streak INTEGER NOT NULL,
          last_notified_recovery_utc_unix INTEGER NOT NULL,
          last_notified_slow_utc_unix INTEGER NOT NULL,
          last_notified_cert_utc_unix INTEGER NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          occurred_utc_unix INTEGER NOT NULL,
          channel TEXT NOT NULL,
          event_type TEXT NOT NULL,
          check_id TEXT NOT NULL,
          check_name TEXT NOT NULL,
          dedupe_key TEXT NOT NULL,
          sent_to TEXT NOT NULL,
          subject TEXT NOT NULL,
          body TEXT NOT NULL,
          success INTEGER NOT NULL,
          error TEXT
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS ix_runs_started ON runs(started_utc_unix DESC);")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS ix_results_check_time ON check_results(check_id, evaluated_utc_unix DESC);"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS ix_results_run ON check_results(run_id);")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS ix_notifications_dedupe_time "
        "ON notification_events(dedupe_key, occurred_utc_unix DESC);"
    )


@dataclass
class CheckState:
    check_id: str
    last_succeeded: bool = True
    last_changed_utc_unix: int = 0
    failure_streak: int = 0
    last_notified_failure_streak: int = 0
    last_notified_recovery_utc_unix: int = 0
    last_notified_slow_utc_unix: int = 0
    last_notified_cert_utc_unix: int = 0


@dataclass(frozen=True)
class NotificationEventRow:
    occurred_utc_unix: int
    channel: str
    event_type: str
    check_id: str
    check_name: str
    dedupe_key: str
    sent_to: str
    subject: str
    body: str
    success: bool
    error: str | None = None


def _state_from_row(row: sqlite3.Row) -> CheckState:
    return CheckState(
        check_id=str(row["check_id"]),
        last_succeeded=bool(row["last_succeeded"]),
        last_changed_utc_unix=int(row["last_changed_utc_unix"]),
        failure_streak=int(row["failure_streak"]),
        last_notified_failure_streak=int(row["last_notified_failure_streak"]),
        last_notified_recovery_utc_unix=int(row["last_notified_recovery_utc_unix"]),
        last_notified_slow_utc_unix=int(row["last_notified_slow_utc_unix"]),
        last_notified_cert_utc_unix=int(row["last_notified_cert_utc_unix"]),
    )


class MonitorStore:
    """
    SQLite-backed run history, per-check state and notification audit log.

    One store holds one connection for the duration of a run; use it as a context
    manager (or call `close()`).
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = str(db_path)
        self._conn = _connect(self.db_path)
        _ensure_schema_conn(self._conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "MonitorStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Runs

    def insert_run_started(
        self,
        *,
        host: str,
        app_version: str,
        app_name: str,
        environment: str,
        started_utc_unix: int | None = None,
    ) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO runs(started_utc_unix, host, app_version, app_name, environment)
            VALUES (?, ?, ?, ?, ?)
            """,
            (started_utc_unix if started_utc_unix is not None else utc_unix(), host, app_version, app_name, environment),
        )
        return int(cur.lastrowid)

    def update_run_finished(
        self,
        run_id: int,
        *,
        overall_status: str,
        exit_code: int,
        finished_utc_unix: int | None = None,
    ) -> None:
        self._conn.execute(
            "UPDATE runs SET finished_utc_unix=?, overall_status=?, exit_code=? WHERE id=?",
            (finished_utc_unix if finished_utc_unix is not None else utc_unix(), overall_status, int(exit_code), int(run_id)),
        )

    def get_run(self, run_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM runs WHERE id=?", (int(run_id),)).fetchone()
        return dict(row) if row else None

    # Check results

    def insert_check_result(self, run_id: int, result: CheckResult, *, evaluated_utc_unix: int | None = None) -> None:
        self._conn.execute(
            """
            INSERT INTO check_results(
              run_id, evaluated_utc_unix, check_id, check_name, url, method, severity,
              succeeded, warning_only, status_code, latency_ms, redirect_count,
              response_bytes, cert_days_remaining, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(run_id),
                evaluated_utc_unix if evaluated_utc_unix is not None else utc_unix(),
                result.check_id,
                result.check_name,
                result.url,
                result.method,
                result.severity,
                1 if result.succeeded else 0,
                1 if result.warning_only else 0,
                result.status_code,
                result.latency_ms,
                int(result.redirect_count),
                result.response_bytes,
                result.cert_days_remaining,
                result.error,
            ),
        )

    def list_check_results(self, run_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM check_results WHERE run_id=? ORDER BY id ASC", (int(run_id),)
        ).fetchall()
        out: list[dict[str, Any]] = []
        for r in rows:
            d = dict(r)
            d["succeeded"] = bool(d["succeeded"])
            d["warning_only"] = bool(d["warning_only"])
            out.append(d)
        return out

    # Check state

    def get_or_create_check_state(self, check_id: str) -> CheckState:
        row = self._conn.execute("SELECT * FROM check_state WHERE check_id=?", (check_id,)).fetchone()
        if row:
            return _state_from_row(row)
        # Starts out "succeeded" so a first run never looks like a recovery.
        state = CheckState(check_id=check_id, last_changed_utc_unix=utc_unix())
        self.upsert_check_state(state)
        return state

    def upsert_check_state(self, state: CheckState) -> None:
        self._conn.execute(
            """
            INSERT INTO check_state(
              check_id, last_succeeded, last_changed_utc_unix, failure_streak,
              last_notified_failure_streak, last_notified_recovery_utc_unix,
              last_notified_slow_utc_unix, last_notified_cert_utc_unix
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(check_id) DO UPDATE SET
              last_succeeded=excluded.last_succeeded,
              last_changed_utc_unix=excluded.last_changed_utc_unix,
              failure_streak=excluded.failure_streak,
              last_notified_failure_streak=excluded.last_notified_failure_streak,
              last_notified_recovery_utc_unix=excluded.last_notified_recovery_utc_unix,
              last_notified_slow_utc_unix=excluded.last_notified_slow_utc_unix,
              last_notified_cert_utc_unix=excluded.last_notified_cert_utc_unix
            """,
            (
                state.check_id,
                1 if state.last_succeeded else 0,
                int(state.last_changed_utc_unix),
                int(state.failure_streak),
                int(state.last_notified_failure_streak),
                int(state.last_notified_recovery_utc_unix),
                int(state.last_notified_slow_utc_unix),
                int(state.last_notified_cert_utc_unix),
            ),
        )

    # Notification audit

    def was_event_sent_within_cooldown(self, dedupe_key: str, cooldown_seconds: int, now_utc_unix: int) -> bool:
        if cooldown_seconds <= 0:
            return False
        row = self._conn.execute(
            """
            SELECT occurred_utc_unix FROM notification_events
            WHERE dedupe_key=?
            ORDER BY occurred_utc_unix DESC
            LIMIT 1
            """,
            (dedupe_key,),
        ).fetchone()
        if not row:
            return False
        return int(row["occurred_utc_unix"]) >= int(now_utc_unix) - int(cooldown_seconds)

    def insert_notification_event(self, event: NotificationEventRow) -> None:
        self._conn.execute(
            """
            INSERT INTO notification_events(
              occurred_utc_unix, channel, event_type, check_id, check_name, dedupe_key,
              sent_to, subject, body, success, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(event.occurred_utc_unix),
                event.channel,
                event.event_type,
                event.check_id,
                event.check_name,
                event.dedupe_key,
                event.sent_to,
                event.subject,
                event.body,
                1 if event.success else 0,
                event.error,
            ),
        )

    def list_notification_events(self, *, dedupe_key: str | None = None) -> list[NotificationEventRow]:
        if dedupe_key is None:
            rows = self._conn.execute("SELECT * FROM notification_events ORDER BY id ASC").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM notification_events WHERE dedupe_key=? ORDER BY id ASC", (dedupe_key,)
            ).fetchall()
        return [
            NotificationEventRow(
                occurred_utc_unix=int(r["occurred_utc_unix"]),
                channel=str(r["channel"]),
                event_type=str(r["event_type"]),
                check_id=str(r["check_id"]),
                check_name=str(r["check_name"]),
                dedupe_key=str(r["dedupe_key"]),
                sent_to=str(r["sent_to"]),
                subject=str(r["subject"]),
                body=str(r["body"]),
                success=bool(r["success"]),
                error=r["error"],
            )
            for r in rows
        ]
