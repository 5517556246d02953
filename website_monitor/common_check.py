from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from website_monitor.config import CheckSpec, ContentRule, LoginFlow
from website_monitor.content_rules import evaluate_rule, truncate
from website_monitor.http_probe import USER_AGENT, HttpFetchResult, HttpProbe, is_redirect_status
from website_monitor.metrics_tls import get_cert_expiry


logger = structlog.get_logger(__name__)

ERROR_SEPARATOR = " | "


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    check_name: str
    url: str
    method: str
    severity: str
    succeeded: bool
    warning_only: bool = False
    status_code: int | None = None
    latency_ms: int | None = None
    error: str | None = None
    redirect_count: int = 0
    response_bytes: int | None = None
    cert_days_remaining: int | None = None
    slow_triggered: bool = False
    cert_expiring_triggered: bool = False

    @property
    def is_critical(self) -> bool:
        return self.severity.strip().lower() == "critical"


@dataclass
class _Verdict:
    """Mutable working copy of a verdict while a check is being evaluated."""

    status_code: int | None = None
    latency_ms: int | None = None
    redirect_count: int = 0
    response_bytes: int | None = None
    cert_days_remaining: int | None = None
    warning_only: bool = False
    slow_triggered: bool = False
    cert_expiring_triggered: bool = False
    errors: list[str] = field(default_factory=list)

    def freeze(self, check: CheckSpec) -> CheckResult:
        return CheckResult(
            check_id=check.id,
            check_name=check.name,
            url=check.url,
            method=check.method.upper(),
            severity=check.severity,
            succeeded=not self.errors,
            warning_only=self.warning_only,
            status_code=self.status_code,
            latency_ms=self.latency_ms,
            error=ERROR_SEPARATOR.join(self.errors) if self.errors else None,
            redirect_count=self.redirect_count,
            response_bytes=self.response_bytes,
            cert_days_remaining=self.cert_days_remaining,
            slow_triggered=self.slow_triggered,
            cert_expiring_triggered=self.cert_expiring_triggered,
        )


def decode_body(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def _status_in_range(status_code: int, check: CheckSpec) -> bool:
    return check.expected_status.min <= status_code <= check.expected_status.max


def _check_rule(rule: ContentRule, fetch: HttpFetchResult, prefix: str | None = None) -> str | None:
    outcome = evaluate_rule(rule, decode_body(fetch.body))
    if outcome.ok:
        return None
    reason = outcome.reason or "Content rule failed"
    return f"{prefix}: {reason}" if prefix else reason


def validate_simple_response(check: CheckSpec, fetch: HttpFetchResult) -> list[str]:
    """All independent violations for a single response; never stops at the first."""
    errors: list[str] = []
    expected = check.expected_status
    max_redirects = check.effective_max_redirects

    if not _status_in_range(fetch.status_code, check):
        errors.append(f"Status out of range: {fetch.status_code} (expected {expected.min}-{expected.max})")

    for header in check.headers or []:
        actual = fetch.headers.get(header.name)
        if actual is None:
            errors.append(f"Missing header: {header.name}")
        elif header.contains.lower() not in actual.lower():
            errors.append(
                f"Header mismatch: {header.name} does not contain '{header.contains}' (actual '{truncate(actual)}')"
            )

    if fetch.redirect_count >= max_redirects and is_redirect_status(fetch.status_code):
        errors.append(f"Redirect budget exceeded (max {max_redirects})")

    bounds = check.content_length
    size = len(fetch.body)
    if bounds is not None:
        if bounds.min_bytes is not None and size < bounds.min_bytes:
            errors.append(f"Content too short: {size} bytes (min {bounds.min_bytes})")
        if bounds.max_bytes is not None and size > bounds.max_bytes:
            errors.append(f"Content too large: {size} bytes (max {bounds.max_bytes})")

    if check.content_rule is not None:
        err = _check_rule(check.content_rule, fetch)
        if err:
            errors.append(err)

    return errors


def apply_latency_trigger(check: CheckSpec, verdict: _Verdict) -> None:
    if check.max_latency_ms is None or verdict.latency_ms is None:
        return
    if verdict.latency_ms <= check.max_latency_ms:
        return

    mode = str(check.latency_mode or "Fail").strip().lower()
    if mode == "ignore":
        verdict.slow_triggered = False
        return

    verdict.slow_triggered = True
    if mode == "warn":
        verdict.warning_only = True
        return

    verdict.errors.append(f"Slow response: {verdict.latency_ms}ms > {check.max_latency_ms}ms")


def apply_tls_trigger(check: CheckSpec, verdict: _Verdict) -> None:
    tls = check.tls
    days = verdict.cert_days_remaining
    if tls is None or days is None:
        return

    if tls.warn_days_remaining is not None and days <= tls.warn_days_remaining:
        verdict.cert_expiring_triggered = True

    if tls.min_days_remaining is not None and days <= tls.min_days_remaining:
        verdict.errors.append(
            f"TLS certificate too close to expiry: {days} days remaining (min {tls.min_days_remaining})"
        )


class CheckExecutor:
    """
    Turns one CheckSpec into exactly one CheckResult.

    Transport errors, timeouts and anything else raised while evaluating a check are
    folded into a failed verdict; `execute` never raises for a single bad check.
    """

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    def _client(self, check: CheckSpec) -> httpx.AsyncClient:
        # A fresh client per check keeps the cookie jar scoped to one execution.
        return httpx.AsyncClient(
            timeout=httpx.Timeout(float(check.timeout_seconds)),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=False,
            transport=self._transport,
        )

    async def execute(self, check: CheckSpec) -> CheckResult:
        verdict = _Verdict()
        try:
            async with self._client(check) as client:
                probe = HttpProbe(client)
                if check.login is not None:
                    await self._run_login_flow(check, check.login, probe, verdict)
                else:
                    await self._run_simple(check, probe, verdict)

            if check.tls is not None:
                await self._probe_tls(check, verdict)
            apply_latency_trigger(check, verdict)
        except Exception as exc:
            verdict.errors = [f"{type(exc).__name__}: {exc}"]
        return verdict.freeze(check)

    async def _run_simple(self, check: CheckSpec, probe: HttpProbe, verdict: _Verdict) -> None:
        fetch = await probe.fetch(
            check.method,
            check.url,
            max_redirects=check.effective_max_redirects,
            max_body_bytes=check.effective_max_body_bytes,
        )
        verdict.status_code = fetch.status_code
        verdict.redirect_count = fetch.redirect_count
        verdict.response_bytes = len(fetch.body)
        verdict.latency_ms = fetch.elapsed_ms
        verdict.errors.extend(validate_simple_response(check, fetch))

    async def _run_login_flow(self, check: CheckSpec, login: LoginFlow, probe: HttpProbe, verdict: _Verdict) -> None:
        max_redirects = check.effective_max_redirects
        max_body = check.effective_max_body_bytes
        expected = check.expected_status

        # Unauthenticated GET only seeds cookies; its response is otherwise ignored.
        if check.url.strip():
            pre = await probe.fetch("GET", check.url, max_redirects=max_redirects, max_body_bytes=max_body)
            verdict.redirect_count += pre.redirect_count

        fields = {login.username_field: login.username or "", login.password_field: login.password or ""}
        fields.update(login.additional_fields or {})

        post = await probe.fetch("POST", login.login_url, max_redirects=max_redirects, max_body_bytes=max_body, data=fields)
        verdict.status_code = post.status_code
        verdict.redirect_count += post.redirect_count
        verdict.response_bytes = len(post.body)
        verdict.latency_ms = post.elapsed_ms

        if not _status_in_range(post.status_code, check):
            verdict.errors.append(
                f"Login POST status out of range: {post.status_code} (expected {expected.min}-{expected.max})"
            )
        if login.success_indicator is not None:
            err = _check_rule(login.success_indicator, post, prefix="Login success indicator failed")
            if err:
                verdict.errors.append(err)

        if not (login.post_login_url or "").strip():
            return

        after = await probe.fetch("GET", login.post_login_url, max_redirects=max_redirects, max_body_bytes=max_body)
        # The post-login page is the page of record; latency accumulates across steps.
        verdict.status_code = after.status_code
        verdict.latency_ms = (verdict.latency_ms or 0) + after.elapsed_ms
        verdict.redirect_count += after.redirect_count
        verdict.response_bytes = len(after.body)

        if not (200 <= after.status_code <= 399):
            verdict.errors.append(f"Post-login GET unexpected status: {after.status_code}")
        if login.post_login_rule is not None:
            err = _check_rule(login.post_login_rule, after, prefix="Post-login rule failed")
            if err:
                verdict.errors.append(err)

    async def _probe_tls(self, check: CheckSpec, verdict: _Verdict) -> None:
        try:
            expiry = await get_cert_expiry(check.url, float(check.timeout_seconds))
        except Exception as exc:
            logger.warning("tls_probe_failed", check_id=check.id, error=str(exc), error_type=type(exc).__name__)
            return
        if expiry is None:
            return
        verdict.cert_days_remaining = expiry.days_remaining
        apply_tls_trigger(check, verdict)
