from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Any, Callable, Protocol, Sequence

import httpx
import structlog

from website_monitor.alerts import PlannedNotification
from website_monitor.config import EmailSettings, NotificationsSection, SmsSettings
from website_monitor.db import MonitorStore, NotificationEventRow, utc_unix
from website_monitor.templating import render_template


logger = structlog.get_logger(__name__)

SMS_METHODS = ("POST", "PUT", "PATCH")


@dataclass(frozen=True)
class SendAttempt:
    success: bool
    sent_to: str
    subject: str
    body: str
    error: str | None = None


class NotificationChannel(Protocol):
    kind: str

    def can_handle(self, event: PlannedNotification) -> bool: ...

    async def send(self, event: PlannedNotification) -> SendAttempt: ...


class EmailChannel:
    kind = "email"

    def __init__(
        self,
        notifications: NotificationsSection,
        *,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self._notifications = notifications
        self._smtp_factory = smtp_factory

    @property
    def settings(self) -> EmailSettings | None:
        return self._notifications.email

    def can_handle(self, event: PlannedNotification) -> bool:
        return self.settings is not None

    def _deliver(self, email: EmailSettings, subject: str, html: str) -> None:
        msg = MIMEText(html, "html", "utf-8")
        msg["Subject"] = subject
        msg["From"] = email.from_address
        msg["To"] = ", ".join(email.to)

        server = self._smtp_factory(email.host, int(email.port), timeout=30)
        try:
            if email.enable_ssl:
                server.starttls()
            if (email.username or "").strip():
                server.login(email.username, email.password or "")
            server.sendmail(email.from_address, list(email.to), msg.as_string())
        finally:
            try:
                server.quit()
            except smtplib.SMTPException:
                pass

    async def send(self, event: PlannedNotification) -> SendAttempt:
        email = self.settings
        if email is None:
            raise RuntimeError("email channel used without email settings")
        template = self._notifications.templates.for_event(event.event_type.value)
        subject = render_template(template.email_subject, event.variables)
        html = render_template(template.email_html_body, event.variables)
        sent_to = ",".join(email.to)

        try:
            await asyncio.to_thread(self._deliver, email, subject, html)
        except Exception as exc:
            logger.warning("email_send_failed", evt=event.event_type.value, check_id=event.check_id, msg=str(exc))
            return SendAttempt(False, sent_to, subject, html, f"{type(exc).__name__}: {exc}")
        return SendAttempt(True, sent_to, subject, html)


def _sms_method(method: str | None) -> str:
    m = str(method or "").strip().upper()
    return m if m in SMS_METHODS else "POST"


class SmsChannel:
    kind = "sms"

    def __init__(self, notifications: NotificationsSection, client: httpx.AsyncClient) -> None:
        self._notifications = notifications
        self._client = client

    @property
    def settings(self) -> SmsSettings | None:
        return self._notifications.sms

    def can_handle(self, event: PlannedNotification) -> bool:
        return self.settings is not None

    async def send(self, event: PlannedNotification) -> SendAttempt:
        sms = self.settings
        if sms is None:
            raise RuntimeError("sms channel used without sms settings")
        template = self._notifications.templates.for_event(event.event_type.value)
        text = render_template(template.sms_text_body, event.variables)
        body = render_template(sms.body_template, {**event.variables, "Body": text})

        headers = {"Content-Type": sms.content_type or "application/json"}
        headers.update(sms.headers or {})

        try:
            resp = await self._client.request(
                _sms_method(sms.method),
                sms.endpoint,
                content=body.encode("utf-8"),
                headers=headers,
            )
        except Exception as exc:
            logger.warning("sms_send_failed", evt=event.event_type.value, check_id=event.check_id, msg=str(exc))
            return SendAttempt(False, sms.endpoint, "", body, f"{type(exc).__name__}: {exc}")

        if 200 <= resp.status_code <= 299:
            return SendAttempt(True, sms.endpoint, "", body)
        return SendAttempt(False, sms.endpoint, "", body, f"HTTP {resp.status_code} {resp.reason_phrase}")


def create_channels(
    enabled_channels: Sequence[str],
    notifications: NotificationsSection | None,
    client: httpx.AsyncClient,
) -> list[NotificationChannel]:
    """Channels that are both enabled and configured, in enabled order."""
    channels: list[NotificationChannel] = []
    if notifications is None:
        return channels
    for name in enabled_channels:
        kind = str(name or "").strip().lower()
        if kind == "email" and notifications.email is not None:
            channels.append(EmailChannel(notifications))
        elif kind == "sms" and notifications.sms is not None:
            channels.append(SmsChannel(notifications, client))
    return channels


class NotificationDispatcher:
    """
    Delivers planned notifications for one run and records every attempt.

    Owns the HTTP client shared by HTTP-based channels; it is opened on entry and
    closed on exit. A failing channel never stops delivery on the others.
    """

    def __init__(
        self,
        store: MonitorStore,
        notifications: NotificationsSection | None,
        enabled_channels: Sequence[str],
        *,
        channels: Sequence[NotificationChannel] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._enabled = list(enabled_channels)
        self._explicit_channels = list(channels) if channels is not None else None
        self._client = client
        self._owns_client = client is None
        self.channels: list[NotificationChannel] = []

    async def __aenter__(self) -> "NotificationDispatcher":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        if self._explicit_channels is not None:
            self.channels = self._explicit_channels
        else:
            self.channels = create_channels(self._enabled, self._notifications, self._client)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._client = None

    async def dispatch(self, planned: Sequence[PlannedNotification]) -> list[NotificationEventRow]:
        rows: list[NotificationEventRow] = []
        for event in planned:
            for channel in self.channels:
                if not channel.can_handle(event):
                    continue
                attempt = await channel.send(event)
                row = NotificationEventRow(
                    occurred_utc_unix=utc_unix(),
                    channel=channel.kind,
                    event_type=event.event_type.value,
                    check_id=event.check_id,
                    check_name=event.check_name,
                    dedupe_key=event.dedupe_key_for_channel(channel.kind),
                    sent_to=attempt.sent_to,
                    subject=attempt.subject,
                    body=attempt.body,
                    success=attempt.success,
                    error=attempt.error,
                )
                self._store.insert_notification_event(row)
                rows.append(row)
                logger.info(
                    "notification_attempt",
                    channel=channel.kind,
                    evt=event.event_type.value,
                    check_id=event.check_id,
                    success=attempt.success,
                    error=attempt.error,
                )
        return rows
