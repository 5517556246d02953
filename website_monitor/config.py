"""Configuration loading, environment expansion and validation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ConfigError(ValueError):
    """Raised for any configuration/schema problem; the run aborts before any check executes."""


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AppSection(_Model):
    name: Optional[str] = Field(default="WebsiteMonitor", description="Application name used in alerts")
    environment: Optional[str] = Field(default="local", description="Environment label used in alerts")
    run_interval_hint_seconds: Optional[int] = Field(default=60, alias="runIntervalHintSeconds")
    timezone: Optional[str] = Field(default=None)


class SqliteSection(_Model):
    db_path: str = Field(default="./monitor.db", alias="dbPath")


class ExpectedStatus(_Model):
    min: int = 200
    max: int = 299


class RedirectSettings(_Model):
    max_redirects: int = Field(default=5, alias="maxRedirects")


class ContentRule(_Model):
    # "contains" | "regex"
    type: str = "contains"
    value: str = ""


class LoginFlow(_Model):
    login_url: str = Field(default="", alias="loginUrl")
    username: Optional[str] = None
    password: Optional[str] = None
    username_field: str = Field(default="username", alias="usernameField")
    password_field: str = Field(default="password", alias="passwordField")
    additional_fields: Optional[dict[str, str]] = Field(default=None, alias="additionalFields")
    success_indicator: Optional[ContentRule] = Field(default=None, alias="successIndicator")
    post_login_url: Optional[str] = Field(default=None, alias="postLoginUrl")
    post_login_rule: Optional[ContentRule] = Field(default=None, alias="postLoginRule")


class TlsThresholds(_Model):
    min_days_remaining: Optional[int] = Field(default=None, alias="minDaysRemaining")
    warn_days_remaining: Optional[int] = Field(default=None, alias="warnDaysRemaining")


class ExpectedHeader(_Model):
    name: str = ""
    contains: str = ""


class ContentLengthBounds(_Model):
    min_bytes: Optional[int] = Field(default=None, alias="minBytes")
    max_bytes: Optional[int] = Field(default=None, alias="maxBytes")


DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BODY_BYTES = 1_048_576


class CheckSpec(_Model):
    id: str = ""
    name: str = ""
    enabled: bool = True
    # "Info" | "Warning" | "Critical"
    severity: str = "Critical"
    url: str = ""
    method: str = "GET"
    timeout_seconds: int = Field(default=15, alias="timeoutSeconds")
    expected_status: ExpectedStatus = Field(default_factory=ExpectedStatus, alias="expectedStatus")
    redirects: Optional[RedirectSettings] = None
    max_latency_ms: Optional[int] = Field(default=None, alias="maxLatencyMs")
    # "Ignore" | "Warn" | "Fail" (Fail when unset)
    latency_mode: Optional[str] = Field(default=None, alias="latencyMode")
    content_rule: Optional[ContentRule] = Field(default=None, alias="contentRule")
    login: Optional[LoginFlow] = None
    tls: Optional[TlsThresholds] = None
    headers: Optional[list[ExpectedHeader]] = None
    content_length: Optional[ContentLengthBounds] = Field(default=None, alias="contentLength")
    max_body_bytes: Optional[int] = Field(default=None, alias="maxBodyBytes")

    @property
    def effective_max_redirects(self) -> int:
        return self.redirects.max_redirects if self.redirects is not None else DEFAULT_MAX_REDIRECTS

    @property
    def effective_max_body_bytes(self) -> int:
        return self.max_body_bytes if self.max_body_bytes is not None else DEFAULT_MAX_BODY_BYTES


class NotificationRules(_Model):
    consecutive_failures: int = Field(default=1, alias="consecutiveFailures")
    cooldown_seconds: int = Field(default=600, alias="cooldownSeconds")


class NotificationTemplate(_Model):
    email_subject: str = Field(default="", alias="emailSubject")
    email_html_body: str = Field(default="", alias="emailHtmlBody")
    sms_text_body: str = Field(default="", alias="smsTextBody")


class NotificationTemplates(_Model):
    check_failed: NotificationTemplate = Field(default_factory=NotificationTemplate, alias="checkFailed")
    recovered: NotificationTemplate = Field(default_factory=NotificationTemplate)
    slow_response: NotificationTemplate = Field(default_factory=NotificationTemplate, alias="slowResponse")
    cert_expiring: NotificationTemplate = Field(default_factory=NotificationTemplate, alias="certExpiring")

    def for_event(self, event_type: str) -> NotificationTemplate:
        by_type = {
            "CheckFailed": self.check_failed,
            "Recovered": self.recovered,
            "SlowResponse": self.slow_response,
            "CertExpiring": self.cert_expiring,
        }
        return by_type.get(str(event_type), self.check_failed)


class EmailSettings(_Model):
    host: str = ""
    port: int = 587
    enable_ssl: bool = Field(default=True, alias="enableSsl")
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str = Field(default="", alias="from")
    to: list[str] = Field(default_factory=list)


class SmsSettings(_Model):
    endpoint: str = ""
    method: str = "POST"
    content_type: str = Field(default="application/json", alias="contentType")
    headers: Optional[dict[str, str]] = None
    # Wraps the rendered SMS text, exposed to this template as {{Body}}.
    body_template: str = Field(default='{ "message": "{{Body}}" }', alias="bodyTemplate")


class NotificationsSection(_Model):
    enabled_channels: Optional[list[str]] = Field(default=None, alias="enabledChannels")
    rules: Optional[NotificationRules] = None
    templates: NotificationTemplates = Field(default_factory=NotificationTemplates)
    email: Optional[EmailSettings] = None
    sms: Optional[SmsSettings] = None


class AppConfig(_Model):
    app: AppSection = Field(default_factory=AppSection)
    sqlite: SqliteSection = Field(default_factory=SqliteSection)
    checks: list[CheckSpec] = Field(default_factory=list)
    notifications: Optional[NotificationsSection] = None

    def find_check(self, check_id: str) -> CheckSpec | None:
        wanted = str(check_id or "").lower()
        for check in self.checks:
            if check.id.lower() == wanted:
                return check
        return None


def expand_env_vars(text: str | None, environ: dict[str, str] | None = None) -> str | None:
    """
    Replace ${VAR} with the variable's value (empty when unset).

    - \\${VAR} is an escape and yields the literal ${VAR}
    - an unterminated ${ is kept as-is
    """
    if not text:
        return text
    if environ is None:
        environ = dict(os.environ)

    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and text.startswith("${", i + 1):
            out.append("${")
            i += 3
            continue
        if ch == "$" and i + 1 < n and text[i + 1] == "{":
            end = text.find("}", i + 2)
            if end < 0:
                out.append(ch)
                i += 1
                continue
            name = text[i + 2 : end].strip()
            out.append(environ.get(name, ""))
            i = end + 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def expand_config_env(cfg: AppConfig, environ: dict[str, str] | None = None) -> None:
    def x(value: str | None) -> str | None:
        return expand_env_vars(value, environ)

    cfg.sqlite.db_path = x(cfg.sqlite.db_path) or ""

    for check in cfg.checks:
        check.url = x(check.url) or ""
        login = check.login
        if login is not None:
            login.login_url = x(login.login_url) or ""
            login.username = x(login.username)
            login.password = x(login.password)
            if login.additional_fields:
                login.additional_fields = {k: x(v) or "" for k, v in login.additional_fields.items()}
            login.post_login_url = x(login.post_login_url)

    notifications = cfg.notifications
    if notifications is None:
        return

    email = notifications.email
    if email is not None:
        email.host = x(email.host) or ""
        email.username = x(email.username)
        email.password = x(email.password)
        email.from_address = x(email.from_address) or ""
        email.to = [x(addr) or "" for addr in email.to]

    sms = notifications.sms
    if sms is not None:
        sms.endpoint = x(sms.endpoint) or ""
        if sms.headers:
            sms.headers = {k: x(v) or "" for k, v in sms.headers.items()}
        sms.body_template = x(sms.body_template) or ""


def _is_absolute_url(url: str) -> bool:
    try:
        parts = urlsplit(str(url or "").strip())
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


def _one_of(value: str | None, allowed: tuple[str, ...]) -> bool:
    return str(value or "").strip().lower() in {a.lower() for a in allowed}


def _validate_content_rule(check_id: str, rule: ContentRule, label: str = "contentRule") -> None:
    if not rule.type.strip():
        raise ConfigError(f"Check {check_id} {label}.type is required")
    if not rule.value.strip():
        raise ConfigError(f"Check {check_id} {label}.value is required")
    if not _one_of(rule.type, ("contains", "regex")):
        raise ConfigError(f"Check {check_id} {label}.type must be contains|regex")


def _validate_login(check_id: str, login: LoginFlow) -> None:
    if not login.login_url.strip():
        raise ConfigError(f"Check {check_id} login.loginUrl is required")
    if not _is_absolute_url(login.login_url):
        raise ConfigError(f"Check {check_id} login.loginUrl is invalid: {login.login_url}")
    if not login.username_field.strip():
        raise ConfigError(f"Check {check_id} login.usernameField is required")
    if not login.password_field.strip():
        raise ConfigError(f"Check {check_id} login.passwordField is required")
    if login.success_indicator is not None:
        _validate_content_rule(check_id, login.success_indicator, "login.successIndicator")
    if login.post_login_rule is not None:
        _validate_content_rule(check_id, login.post_login_rule, "login.postLoginRule")


def validate_config(cfg: AppConfig) -> None:
    if not cfg.sqlite.db_path.strip():
        raise ConfigError("sqlite.dbPath is required")

    if not cfg.checks:
        raise ConfigError("checks must contain at least one check")

    seen: set[str] = set()
    for c in cfg.checks:
        if not c.id.strip():
            raise ConfigError("Each check must have an id")
        if c.id.lower() in seen:
            raise ConfigError(f"Duplicate check id: {c.id}")
        seen.add(c.id.lower())

        if not c.name.strip():
            raise ConfigError(f"Check {c.id} must have a name")
        if not c.url.strip():
            raise ConfigError(f"Check {c.id} must have a url")
        if not _is_absolute_url(c.url):
            raise ConfigError(f"Check {c.id} url is not a valid absolute URI: {c.url}")
        if c.timeout_seconds <= 0 or c.timeout_seconds > 300:
            raise ConfigError(f"Check {c.id} timeoutSeconds must be 1..300")
        if not _one_of(c.severity, ("Info", "Warning", "Critical")):
            raise ConfigError(f"Check {c.id} severity must be Info|Warning|Critical (got: {c.severity})")
        if not _one_of(c.method, ("GET", "POST", "HEAD")):
            raise ConfigError(f"Check {c.id} method must be GET|POST|HEAD (got: {c.method})")
        if c.latency_mode is not None and not _one_of(c.latency_mode, ("Ignore", "Warn", "Fail")):
            raise ConfigError(f"Check {c.id} latencyMode must be Ignore|Warn|Fail (got: {c.latency_mode})")

        status = c.expected_status
        if status.min < 100 or status.max > 599 or status.min > status.max:
            raise ConfigError(f"Check {c.id} expectedStatus must be 100..599 and min<=max")

        if c.redirects is not None and c.redirects.max_redirects < 0:
            raise ConfigError(f"Check {c.id} redirects.maxRedirects must be >= 0")

        if c.content_rule is not None:
            _validate_content_rule(c.id, c.content_rule)

        if c.login is not None:
            _validate_login(c.id, c.login)

        for h in c.headers or []:
            if not h.name.strip():
                raise ConfigError(f"Check {c.id} headers[] requires name")

        bounds = c.content_length
        if bounds is not None:
            if bounds.min_bytes is not None and bounds.min_bytes < 0:
                raise ConfigError(f"Check {c.id} contentLength.minBytes must be >= 0")
            if bounds.max_bytes is not None and bounds.max_bytes < 0:
                raise ConfigError(f"Check {c.id} contentLength.maxBytes must be >= 0")
            if bounds.min_bytes is not None and bounds.max_bytes is not None and bounds.min_bytes > bounds.max_bytes:
                raise ConfigError(f"Check {c.id} contentLength minBytes > maxBytes")

        if c.max_body_bytes is not None and not (1024 <= c.max_body_bytes <= 50_000_000):
            raise ConfigError(f"Check {c.id} maxBodyBytes should be between 1024 and 50_000_000")


def parse_config(data: Any) -> AppConfig:
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Config invalid for schema: {exc}") from exc


def _read_raw(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON config: {exc}") from exc
    if suffix in {".yaml", ".yml"}:
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML config: {exc}") from exc
    raise ConfigError(f"Unsupported config extension: {suffix} (use .json, .yaml, or .yml)")


def load_config(path: Path, environ: dict[str, str] | None = None) -> AppConfig:
    """Load, expand and validate a config file. Raises ConfigError on any problem."""
    if not str(path or "").strip():
        raise ConfigError("Config path was empty")
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config not found: {path}")

    cfg = parse_config(_read_raw(path))
    expand_config_env(cfg, environ)
    validate_config(cfg)
    return cfg


def resolve_config_path(arg_path: str | None, cwd: Path | None = None) -> Path:
    if arg_path and str(arg_path).strip():
        return Path(str(arg_path).strip()).expanduser().resolve()

    base = cwd or Path.cwd()
    candidates = [base / "config.yaml", base / "config.yml", base / "config.json"]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    # Used for the "not found" message when nothing exists.
    return candidates[0]
