from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Protocol, Sequence

from website_monitor.common_check import CheckResult
from website_monitor.config import AppConfig, NotificationRules
from website_monitor.db import CheckState


class EventType(str, enum.Enum):
    CHECK_FAILED = "CheckFailed"
    RECOVERED = "Recovered"
    SLOW_RESPONSE = "SlowResponse"
    CERT_EXPIRING = "CertExpiring"

    def __str__(self) -> str:
        return self.value


def dedupe_key(channel: str, event_type: EventType, check_id: str) -> str:
    return f"{channel}:{event_type.value}:{check_id}"


@dataclass(frozen=True)
class PlannedNotification:
    event_type: EventType
    check_id: str
    check_name: str
    environment: str
    url: str
    # Template variables ({{Key}}), all values already stringified.
    variables: dict[str, str] = field(default_factory=dict)

    def dedupe_key_for_channel(self, channel: str) -> str:
        return dedupe_key(channel, self.event_type, self.check_id)


class StateStore(Protocol):
    def get_or_create_check_state(self, check_id: str) -> CheckState: ...

    def upsert_check_state(self, state: CheckState) -> None: ...

    def was_event_sent_within_cooldown(self, dedupe_key: str, cooldown_seconds: int, now_utc_unix: int) -> bool: ...


def resolve_enabled_channels(
    config_channels: Iterable[str] | None,
    *,
    cli_email: bool = False,
    cli_sms: bool = False,
) -> list[str]:
    """CLI flags, when any is given, are the explicit enabled set; otherwise config decides."""
    if cli_email or cli_sms:
        out: list[str] = []
        if cli_email:
            out.append("email")
        if cli_sms:
            out.append("sms")
        return out
    return [str(c).strip().lower() for c in (config_channels or []) if str(c or "").strip()]


@dataclass(frozen=True)
class StateTransition:
    recovered: bool = False
    failure_threshold_crossed: bool = False


def advance_check_state(
    state: CheckState,
    *,
    succeeded: bool,
    consecutive_failures: int,
    now_utc_unix: int,
) -> StateTransition:
    """
    Apply one verdict to a check's persisted state.

    Returns which edges were crossed; the caller decides whether they are announced
    (cooldown) and records the notified markers.
    """
    was_ok = state.last_succeeded
    if succeeded:
        state.last_succeeded = True
        state.failure_streak = 0
        state.last_changed_utc_unix = now_utc_unix
        state.last_notified_failure_streak = 0
        return StateTransition(recovered=not was_ok)

    state.failure_streak = 1 if was_ok else state.failure_streak + 1
    state.last_succeeded = False
    state.last_changed_utc_unix = now_utc_unix
    crossed = (
        state.failure_streak >= consecutive_failures
        and state.last_notified_failure_streak < consecutive_failures
    )
    return StateTransition(failure_threshold_crossed=crossed)


def _fmt(value: object) -> str:
    return "" if value is None else str(value)


class NotificationPlanner:
    """
    Decides which notifications a batch of verdicts should produce.

    Failure/recovery are edge-triggered from the persisted streak; slow-response and
    cert-expiring fire on every run their flag is set. Everything is gated by the
    per-channel cooldown, and a cooldown hit on any enabled channel suppresses the
    event for all of them.
    """

    def __init__(self, store: StateStore, config: AppConfig, enabled_channels: Sequence[str]) -> None:
        self._store = store
        self._config = config
        self._channels = list(enabled_channels)

    @property
    def rules(self) -> NotificationRules:
        notifications = self._config.notifications
        if notifications is not None and notifications.rules is not None:
            return notifications.rules
        return NotificationRules()

    def plan(self, results: Iterable[CheckResult], now: datetime | None = None) -> list[PlannedNotification]:
        now = now or datetime.now(timezone.utc)
        now_unix = int(now.timestamp())
        rules = self.rules
        notifications_configured = self._config.notifications is not None

        planned: list[PlannedNotification] = []
        for r in results:
            state = self._store.get_or_create_check_state(r.check_id)
            transition = advance_check_state(
                state,
                succeeded=r.succeeded,
                consecutive_failures=rules.consecutive_failures,
                now_utc_unix=now_unix,
            )

            if transition.recovered and not self._cooldown_hit(EventType.RECOVERED, r.check_id, now_unix):
                planned.append(self._build(r, EventType.RECOVERED, now))
                state.last_notified_recovery_utc_unix = now_unix

            if transition.failure_threshold_crossed and not self._cooldown_hit(
                EventType.CHECK_FAILED, r.check_id, now_unix
            ):
                planned.append(
                    self._build(r, EventType.CHECK_FAILED, now, FailureStreak=str(state.failure_streak))
                )
                state.last_notified_failure_streak = rules.consecutive_failures

            if (
                r.slow_triggered
                and notifications_configured
                and not self._cooldown_hit(EventType.SLOW_RESPONSE, r.check_id, now_unix)
            ):
                check = self._config.find_check(r.check_id)
                max_latency = _fmt(check.max_latency_ms) if check is not None else ""
                planned.append(self._build(r, EventType.SLOW_RESPONSE, now, MaxLatencyMs=max_latency))
                state.last_notified_slow_utc_unix = now_unix

            if (
                r.cert_expiring_triggered
                and notifications_configured
                and not self._cooldown_hit(EventType.CERT_EXPIRING, r.check_id, now_unix)
            ):
                planned.append(self._build(r, EventType.CERT_EXPIRING, now))
                state.last_notified_cert_utc_unix = now_unix

            self._store.upsert_check_state(state)

        return planned

    def _cooldown_hit(self, event_type: EventType, check_id: str, now_unix: int) -> bool:
        cooldown = self.rules.cooldown_seconds
        for channel in self._channels:
            key = dedupe_key(channel, event_type, check_id)
            if self._store.was_event_sent_within_cooldown(key, cooldown, now_unix):
                return True
        return False

    def _build(self, r: CheckResult, event_type: EventType, now: datetime, **extra: str) -> PlannedNotification:
        app = self._config.app
        variables = {
            "UtcNow": now.isoformat(),
            "AppName": app.name or "WebsiteMonitor",
            "Environment": app.environment or "",
            "CheckId": r.check_id,
            "CheckName": r.check_name,
            "Url": r.url,
            "StatusCode": _fmt(r.status_code),
            "LatencyMs": _fmt(r.latency_ms),
            "Error": r.error or "",
            "RedirectCount": str(r.redirect_count),
            "ResponseBytes": _fmt(r.response_bytes),
            "CertDaysRemaining": _fmt(r.cert_days_remaining),
        }
        variables.update(extra)
        return PlannedNotification(
            event_type=event_type,
            check_id=r.check_id,
            check_name=r.check_name,
            environment=app.environment or "",
            url=r.url,
            variables=variables,
        )
