"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, List

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from embedhttp import HTTPServer, ServerConfig
from embedhttp.core import Connection, Dispatcher, SocketTransport, UpgradeCoordinator


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        poll_interval=0.05,
        log_level="WARNING",
    )


# =============================================================================
# RAW CLIENT HELPERS
# =============================================================================

def read_until_closed(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read everything the server sends until it closes the connection."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        try:
            data = sock.recv(65536)
        except (ConnectionResetError, socket.timeout):
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


class ResponseReader:
    """
    Reads responses off a client socket one at a time.

    Bytes past the end of one response are kept for the next read, so
    pipelined responses can be read back in order.
    """

    def __init__(self, sock: socket.socket, timeout: float = 5.0):
        self.sock = sock
        self.sock.settimeout(timeout)
        self.buf = b""

    def _fill(self, n: int) -> None:
        while len(self.buf) < n:
            data = self.sock.recv(65536)
            if not data:
                raise AssertionError(f"connection closed early, buffered: {self.buf!r}")
            self.buf += data

    def _take(self, n: int) -> bytes:
        self._fill(n)
        data, self.buf = self.buf[:n], self.buf[n:]
        return data

    def _line(self) -> str:
        while b"\r\n" not in self.buf:
            self._fill(len(self.buf) + 1)
        line, self.buf = self.buf.split(b"\r\n", 1)
        return line.decode("latin-1")

    def _fields(self) -> list:
        fields = []
        while True:
            line = self._line()
            if not line:
                return fields
            name, value = line.split(": ", 1)
            fields.append((name, value))

    def read(self, method: str = "GET"):
        """
        Read one response.

        Returns:
            (status_line, [(name, value), ...], body, trailers)
        """
        status_line = self._line()
        headers = self._fields()
        lookup = {name.lower(): value for name, value in headers}
        status = int(status_line.split(" ")[1])

        body = b""
        trailers = []
        if method == "HEAD" or status < 200 or status in (204, 304):
            pass
        elif lookup.get("transfer-encoding") == "chunked":
            while True:
                size = int(self._line().split(";")[0], 16)
                if size == 0:
                    trailers = self._fields()
                    break
                body += self._take(size)
                assert self._take(2) == b"\r\n"
        elif "content-length" in lookup:
            body = self._take(int(lookup["content-length"]))
        else:
            body = self.buf + read_until_closed(self.sock)
            self.buf = b""
        return status_line, headers, body, trailers


def read_response(sock: socket.socket, method: str = "GET"):
    """Read exactly one response from a fresh socket: (status_line, headers, body)."""
    status_line, headers, body, _ = ResponseReader(sock).read(method)
    return status_line, headers, body


# =============================================================================
# CONNECTION OVER A SOCKETPAIR
# =============================================================================

class ConnectionHarness:
    """
    A Connection served on a background thread, driven from the test
    through the other end of a socketpair.
    """

    def __init__(self, handler, config: ServerConfig, upgrade_handlers=()):
        self.calls: List = []
        self.client, server_sock = socket.socketpair()
        self.client.settimeout(5.0)

        def recording_handler(request, response):
            self.calls.append((request.method, request.url))
            handler(request, response)

        self.connection = Connection(
            SocketTransport(server_sock, ("127.0.0.1", 40000)),
            Dispatcher(recording_handler),
            upgrades=UpgradeCoordinator(upgrade_handlers),
            config=config,
        )
        self.thread = threading.Thread(target=self.connection.serve, daemon=True)

    def start(self) -> "ConnectionHarness":
        self.thread.start()
        return self

    def send(self, data: bytes) -> None:
        self.client.sendall(data)

    def join(self, timeout: float = 5.0) -> bool:
        """Wait for serve() to return. True if it did."""
        self.thread.join(timeout)
        return not self.thread.is_alive()

    def close(self) -> None:
        self.client.close()
        self.connection.close()
        self.thread.join(2.0)


@pytest.fixture
def harness(config: ServerConfig):
    """Factory: harness(handler, upgrade_handlers=()) → started ConnectionHarness."""
    created: List[ConnectionHarness] = []

    def make(handler, upgrade_handlers=(), **overrides):
        cfg = ServerConfig(**{**config.__dict__, **overrides})
        h = ConnectionHarness(handler, cfg, upgrade_handlers).start()
        created.append(h)
        return h

    yield make

    for h in created:
        h.close()


# =============================================================================
# LIVE SERVER
# =============================================================================

class LiveServer:
    """A listening HTTPServer on an ephemeral port."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self.port = 0

    def start(self) -> "LiveServer":
        assert self.server.listen("127.0.0.1", 0)
        self.port = self.server.server_port()
        return self

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock

    def stop(self) -> None:
        self.server.close()


@pytest.fixture
def live_server(config: ServerConfig) -> Generator:
    """Factory: live_server(handler, **kwargs) → started LiveServer."""
    started: List[LiveServer] = []

    def make(handler, **kwargs) -> LiveServer:
        srv = LiveServer(HTTPServer(handler, config, **kwargs)).start()
        started.append(srv)
        return srv

    yield make

    for srv in started:
        srv.stop()


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is truthy or ``timeout`` passes."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
