from __future__ import annotations

import asyncio
import math
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlsplit

from cryptography import x509


class TlsProbeError(Exception):
    """Connect or handshake failure while reading a peer certificate."""


@dataclass(frozen=True)
class CertExpiry:
    host: str
    port: int
    # None when the handshake completed but the peer presented no certificate.
    not_after_iso: str | None
    days_remaining: int | None


def _tls_host_port_from_url(url: str) -> tuple[str, int] | None:
    try:
        parts = urlsplit(str(url or "").strip())
        port = parts.port
    except ValueError:
        return None
    if (parts.scheme or "").lower() != "https":
        return None
    host = (parts.hostname or "").strip()
    if not host:
        return None
    return host, int(port or 443)


def days_until(not_after: datetime, now: datetime | None = None) -> int:
    """Whole days left before `not_after`, floored (negative once expired)."""
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return math.floor((not_after - now).total_seconds() / 86400.0)


def _insecure_context() -> ssl.SSLContext:
    # Only the validity window is read; the chain is not verified.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx


async def _fetch_peer_cert_der(host: str, port: int, timeout_seconds: float) -> bytes | None:
    writer = None
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=_insecure_context(), server_hostname=host),
            timeout=max(1.0, float(timeout_seconds)),
        )
        sslobj = writer.get_extra_info("ssl_object")
        return sslobj.getpeercert(binary_form=True) if sslobj else None
    except (OSError, asyncio.TimeoutError) as exc:
        raise TlsProbeError(f"{type(exc).__name__}: {exc}") from exc
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass


async def get_cert_expiry(
    url: str,
    timeout_seconds: float,
    *,
    now: datetime | None = None,
) -> CertExpiry | None:
    """
    Read the leaf certificate's expiry for an https URL.

    Returns None for non-https URLs. Raises TlsProbeError when the connection or
    handshake fails; callers treat that as an auxiliary failure.
    """
    target = _tls_host_port_from_url(url)
    if target is None:
        return None
    host, port = target

    der = await _fetch_peer_cert_der(host, port, timeout_seconds)
    if not der:
        return CertExpiry(host=host, port=port, not_after_iso=None, days_remaining=None)

    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise TlsProbeError(f"unreadable certificate: {exc}") from exc
    not_after = cert.not_valid_after_utc
    return CertExpiry(
        host=host,
        port=port,
        not_after_iso=not_after.isoformat(),
        days_remaining=days_until(not_after, now),
    )
