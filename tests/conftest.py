from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs

import pytest


OK_PAGE = (
    "<!doctype html><html><head><title>Example Domain</title></head>"
    "<body><h1>Example Domain</h1><p>Everything is fine.</p></body></html>"
)


class _SiteHandler(BaseHTTPRequestHandler):
    # Requests seen by the SMS gateway route, for assertions.
    gateway_requests: list[dict] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _send(self, status: int, body: str = "", headers: dict[str, str] | None = None) -> None:
        body_bytes = body.encode("utf-8")
        self.send_response(status)
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        self.send_header("Content-Length", str(len(body_bytes)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body_bytes)

    def _redirect(self, status: int, location: str) -> None:
        self.send_response(status)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def do_HEAD(self) -> None:  # noqa: N802
        self.do_GET()

    def do_GET(self) -> None:  # noqa: N802
        path = self.path
        html = {"Content-Type": "text/html; charset=utf-8"}

        if path == "/ok":
            self._send(200, OK_PAGE, html)
        elif path == "/redirect":
            self._redirect(302, "/ok")
        elif path == "/loop":
            self._redirect(302, "/loop")
        elif path.startswith("/chain/"):
            remaining = int(path.rsplit("/", 1)[1])
            self._redirect(301, f"/chain/{remaining - 1}" if remaining > 1 else "/ok")
        elif path == "/absolute-redirect":
            host, port = self.server.server_address[:2]
            self._redirect(302, f"http://{host}:{port}/ok")
        elif path == "/dup-headers":
            self.send_response(200)
            self.send_header("X-Multi", "a")
            self.send_header("X-Multi", "b")
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", "2")
            self.end_headers()
            self.wfile.write(b"ok")
        elif path == "/big":
            self._send(200, "x" * 5000, {"Content-Type": "text/plain"})
        elif path == "/tiny":
            self._send(200, "hi", {"Content-Type": "text/plain"})
        elif path == "/slowish":
            time.sleep(0.3)
            self._send(200, OK_PAGE, html)
        elif path == "/hang":
            time.sleep(2.5)
            self._send(200, OK_PAGE, html)
        elif path == "/echo-method":
            self._send(200, "method=GET", {"Content-Type": "text/plain"})
        elif path == "/account":
            cookie = self.headers.get("Cookie") or ""
            if "session=abc" in cookie:
                self._send(200, "<h1>Account of alice</h1>", html)
            else:
                self._redirect(302, "/login-page")
        elif path == "/login-page":
            self._send(200, "<form>login</form>", html)
        elif path == "/dashboard":
            self._send(200, "<h1>Dashboard</h1>", html)
        elif path == "/server-error":
            self._send(500, "boom", {"Content-Type": "text/plain"})
        else:
            self._send(404, "Not Found", {"Content-Type": "text/plain; charset=utf-8"})

    def do_POST(self) -> None:  # noqa: N802
        path = self.path
        body = self._read_body()

        if path == "/login":
            form = {k: v[0] for k, v in parse_qs(body.decode("utf-8")).items()}
            if form.get("user") == "alice" and form.get("pass") == "secret" and form.get("tenant") == "acme":
                self.send_response(200)
                self.send_header("Set-Cookie", "session=abc; Path=/")
                self.send_header("Content-Type", "text/html")
                payload = b"Welcome alice"
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)
            else:
                self._send(200, "Invalid credentials", {"Content-Type": "text/html"})
        elif path == "/login-redirect":
            self.send_response(303)
            self.send_header("Set-Cookie", "session=abc; Path=/")
            self.send_header("Location", "/account")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif path == "/post-303":
            self._redirect(303, "/echo-method")
        elif path == "/post-307":
            self._redirect(307, "/echo-method")
        elif path == "/echo-method":
            self._send(200, f"method=POST len={len(body)}", {"Content-Type": "text/plain"})
        elif path == "/sms-gateway":
            _SiteHandler.gateway_requests.append(
                {"method": "POST", "headers": dict(self.headers.items()), "body": body.decode("utf-8")}
            )
            self._send(202, '{"queued": true}', {"Content-Type": "application/json"})
        elif path == "/sms-gateway-down":
            self._send(503, "unavailable", {"Content-Type": "text/plain"})
        else:
            self._send(404, "Not Found", {"Content-Type": "text/plain"})

    def do_PUT(self) -> None:  # noqa: N802
        body = self._read_body()
        if self.path == "/sms-gateway":
            _SiteHandler.gateway_requests.append(
                {"method": "PUT", "headers": dict(self.headers.items()), "body": body.decode("utf-8")}
            )
            self._send(200, "ok", {"Content-Type": "text/plain"})
        else:
            self._send(404, "Not Found", {"Content-Type": "text/plain"})


@pytest.fixture(scope="session")
def local_server_base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _SiteHandler)
    httpd.daemon_threads = True
    host, port = httpd.server_address[:2]
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture
def gateway_requests() -> list[dict]:
    _SiteHandler.gateway_requests.clear()
    return _SiteHandler.gateway_requests
