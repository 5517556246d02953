from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

import httpx


REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
# Redirects that switch the follow-up request to GET; 307/308 keep the method.
METHOD_DOWNGRADE_STATUS_CODES = frozenset({301, 302, 303})

USER_AGENT = "website-monitor/1.0"


def is_redirect_status(status_code: int | None) -> bool:
    return status_code in REDIRECT_STATUS_CODES


class HeaderMap(Mapping[str, str]):
    """
    Case-insensitive, insertion-ordered header map.

    Repeated header lines are joined with "," under the first-seen spelling of the name.
    """

    def __init__(self, items: Iterable[tuple[str, str]] = ()) -> None:
        self._items: dict[str, tuple[str, str]] = {}
        for name, value in items:
            self.add(name, value)

    def add(self, name: str, value: str) -> None:
        key = str(name).lower()
        existing = self._items.get(key)
        if existing is None:
            self._items[key] = (str(name), str(value))
        else:
            self._items[key] = (existing[0], f"{existing[1]},{value}")

    def __getitem__(self, name: str) -> str:
        return self._items[str(name).lower()][1]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _value in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self.items())!r})"


@dataclass(frozen=True)
class HttpFetchResult:
    status_code: int
    headers: HeaderMap
    body: bytes
    redirect_count: int
    final_url: str
    elapsed_ms: int


async def _read_up_to(response: httpx.Response, max_bytes: int) -> bytes:
    buf = bytearray()
    if max_bytes <= 0:
        return bytes(buf)
    async for chunk in response.aiter_bytes():
        remaining = max_bytes - len(buf)
        if len(chunk) >= remaining:
            buf.extend(chunk[:remaining])
            break
        buf.extend(chunk)
    return bytes(buf)


class HttpProbe:
    """
    One logical HTTP exchange over a caller-owned client.

    Redirects are followed here rather than by httpx so they can be counted and capped.
    Cookies set anywhere in the chain land in the client's jar.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        max_redirects: int,
        max_body_bytes: int,
        data: dict[str, Any] | None = None,
    ) -> HttpFetchResult:
        started = time.perf_counter()
        request = self._client.build_request(str(method).upper(), url, data=data)
        redirect_count = 0

        while True:
            response = await self._client.send(request, stream=True, follow_redirects=False)
            try:
                location = response.headers.get("location")
                if is_redirect_status(response.status_code) and location and redirect_count < max_redirects:
                    redirect_count += 1
                    next_url = request.url.join(location)
                    next_method = "GET" if response.status_code in METHOD_DOWNGRADE_STATUS_CODES else request.method
                    # 307/308 keep the method but the body is not replayed.
                    request = self._client.build_request(next_method, next_url)
                    continue

                headers = HeaderMap(
                    (k.decode("latin-1"), v.decode("latin-1")) for k, v in response.headers.raw
                )
                body = await _read_up_to(response, int(max_body_bytes))
            finally:
                await response.aclose()

            elapsed_ms = int((time.perf_counter() - started) * 1000.0)
            return HttpFetchResult(
                status_code=int(response.status_code),
                headers=headers,
                body=body,
                redirect_count=redirect_count,
                final_url=str(request.url),
                elapsed_ms=elapsed_ms,
            )
