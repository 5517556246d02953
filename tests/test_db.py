from __future__ import annotations

import sqlite3
from pathlib import Path

from website_monitor.common_check import CheckResult
from website_monitor.db import SCHEMA_VERSION, CheckState, MonitorStore, NotificationEventRow


def _event(key: str, occurred: int, success: bool = True) -> NotificationEventRow:
    channel, event_type, check_id = key.split(":")
    return NotificationEventRow(
        occurred_utc_unix=occurred,
        channel=channel,
        event_type=event_type,
        check_id=check_id,
        check_name="Homepage",
        dedupe_key=key,
        sent_to="ops@example.com",
        subject="s",
        body="b",
        success=success,
        error=None if success else "SMTPException: nope",
    )


def test_schema_created_with_version(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "monitor.db"
    with MonitorStore(str(db_path)):
        pass
    assert db_path.exists()

    conn = sqlite3.connect(db_path)
    try:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        version = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()[0]
    finally:
        conn.close()
    assert {"runs", "check_results", "check_state", "notification_events", "schema_meta"} <= tables
    assert int(version) == SCHEMA_VERSION

    # Re-opening an up-to-date database is a no-op.
    with MonitorStore(str(db_path)):
        pass


def test_check_state_defaults_and_upsert(tmp_path: Path) -> None:
    with MonitorStore(str(tmp_path / "m.db")) as store:
        state = store.get_or_create_check_state("home")
        assert state.last_succeeded is True
        assert state.failure_streak == 0
        assert state.last_notified_failure_streak == 0
        assert state.last_notified_recovery_utc_unix == 0

        store.upsert_check_state(
            CheckState(
                check_id="home",
                last_succeeded=False,
                last_changed_utc_unix=100,
                failure_streak=3,
                last_notified_failure_streak=2,
                last_notified_slow_utc_unix=90,
            )
        )
        again = store.get_or_create_check_state("home")
        assert again.last_succeeded is False
        assert again.failure_streak == 3
        assert again.last_notified_failure_streak == 2
        assert again.last_notified_slow_utc_unix == 90
        assert again.last_changed_utc_unix == 100


def test_cooldown_window_boundaries(tmp_path: Path) -> None:
    with MonitorStore(str(tmp_path / "m.db")) as store:
        key = "email:CheckFailed:home"
        assert store.was_event_sent_within_cooldown(key, 600, 1_000) is False

        store.insert_notification_event(_event(key, 1_000))
        assert store.was_event_sent_within_cooldown(key, 600, 1_599) is True
        assert store.was_event_sent_within_cooldown(key, 600, 1_600) is True
        assert store.was_event_sent_within_cooldown(key, 600, 1_601) is False
        assert store.was_event_sent_within_cooldown(key, 0, 1_001) is False
        assert store.was_event_sent_within_cooldown("sms:CheckFailed:home", 600, 1_001) is False


def test_failed_attempts_count_toward_cooldown(tmp_path: Path) -> None:
    with MonitorStore(str(tmp_path / "m.db")) as store:
        store.insert_notification_event(_event("sms:Recovered:home", 500, success=False))
        assert store.was_event_sent_within_cooldown("sms:Recovered:home", 60, 530) is True

        rows = store.list_notification_events(dedupe_key="sms:Recovered:home")
        assert len(rows) == 1
        assert rows[0].success is False
        assert rows[0].error == "SMTPException: nope"


def test_run_and_results_round_trip(tmp_path: Path) -> None:
    with MonitorStore(str(tmp_path / "m.db")) as store:
        run_id = store.insert_run_started(
            host="box", app_version="1.0.0", app_name="WebsiteMonitor", environment="test", started_utc_unix=10
        )
        store.insert_check_result(
            run_id,
            CheckResult(
                check_id="home",
                check_name="Homepage",
                url="https://example.com/",
                method="GET",
                severity="Critical",
                succeeded=False,
                status_code=503,
                latency_ms=42,
                error="Status out of range: 503 (expected 200-299)",
                redirect_count=1,
                response_bytes=12,
            ),
            evaluated_utc_unix=11,
        )
        store.update_run_finished(run_id, overall_status="CRITICAL_FAILED", exit_code=2, finished_utc_unix=12)

        run = store.get_run(run_id)
        assert run is not None
        assert run["overall_status"] == "CRITICAL_FAILED"
        assert run["exit_code"] == 2
        assert run["finished_utc_unix"] == 12

        results = store.list_check_results(run_id)
        assert len(results) == 1
        assert results[0]["check_id"] == "home"
        assert results[0]["succeeded"] is False
        assert results[0]["status_code"] == 503
        assert results[0]["cert_days_remaining"] is None
        assert results[0]["redirect_count"] == 1
