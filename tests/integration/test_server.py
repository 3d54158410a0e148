"""
Integration tests for HTTPServer over real TCP sockets.
"""

import threading

import pytest

from conftest import LiveServer, ResponseReader, read_response, read_until_closed, wait_for
from embedhttp import HTTPServer, ServerConfig
from embedhttp.core import FunctionUpgradeHandler, SocketTransport


def hello(request, response):
    response.send_text(f"hello {request.path}")


class TestListening:
    """Binding, ports and shutdown."""

    def test_listen_on_ephemeral_port(self, live_server):
        srv = live_server(hello)

        assert srv.server.is_listening()
        assert srv.server.server_port() == srv.port > 0

        srv.stop()
        assert not srv.server.is_listening()
        assert srv.server.server_port() == 0

    def test_listen_twice_fails(self, live_server):
        srv = live_server(hello)
        assert srv.server.listen("127.0.0.1", 0) is False

    def test_port_in_use_fails(self, live_server, config):
        srv = live_server(hello)
        other = HTTPServer(hello, config)

        assert other.listen("127.0.0.1", srv.port) is False
        assert not other.is_listening()

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            HTTPServer(hello, ServerConfig(port=-1))

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError):
            HTTPServer("not a handler")


class TestRequests:
    """Requests over TCP."""

    def test_simple_get(self, live_server, sample_get_request):
        srv = live_server(hello)
        sock = srv.connect()
        try:
            sock.sendall(sample_get_request)
            status, headers, body = read_response(sock)
        finally:
            sock.close()

        assert status == "HTTP/1.1 200 OK"
        assert body == b"hello /api/users"
        assert any(name == "Server" for name, _ in headers)

    def test_post_with_close(self, live_server, sample_post_request):
        def echo(request, response):
            response.send_json({"received": len(request.body.read())})

        srv = live_server(echo)
        sock = srv.connect()
        try:
            sock.sendall(sample_post_request)
            status, headers, body = read_response(sock)
            assert read_until_closed(sock) == b""
        finally:
            sock.close()

        assert status == "HTTP/1.1 200 OK"
        assert ("Connection", "close") in headers
        assert body == b'{"received": 45}'

    def test_keep_alive_reuses_connection(self, live_server):
        srv = live_server(hello)
        sock = srv.connect()
        try:
            reader = ResponseReader(sock)
            for path in ("/one", "/two", "/three"):
                sock.sendall(f"GET {path} HTTP/1.1\r\nHost: x\r\n\r\n".encode())
                assert reader.read()[2] == f"hello {path}".encode()
            assert srv.server.active_connections == 1
        finally:
            sock.close()

        assert wait_for(lambda: srv.server.active_connections == 0)

    def test_connections_are_served_concurrently(self, live_server):
        release = threading.Event()

        def handler(request, response):
            if request.path == "/slow":
                release.wait(5.0)
            response.send_text(request.path)

        srv = live_server(handler)
        slow = srv.connect()
        fast = srv.connect()
        try:
            slow.sendall(b"GET /slow HTTP/1.1\r\n\r\n")
            fast.sendall(b"GET /fast HTTP/1.1\r\n\r\n")
            assert read_response(fast)[2] == b"/fast"

            release.set()
            assert read_response(slow)[2] == b"/slow"
        finally:
            release.set()
            slow.close()
            fast.close()

    def test_close_tears_down_open_connections(self, live_server):
        srv = live_server(hello)
        sock = srv.connect()
        try:
            sock.sendall(b"GET / HTTP/1.1\r\n\r\n")
            read_response(sock)
            assert wait_for(lambda: srv.server.active_connections == 1)

            srv.stop()

            assert read_until_closed(sock) == b""
            assert srv.server.active_connections == 0
        finally:
            sock.close()


class TestComposition:
    """Accept hooks and upgrade handlers."""

    def test_custom_accept_hook(self, config):
        accepted = []
        holder = []

        def hook(sock, address):
            accepted.append(address)
            holder[0].handle_connection(SocketTransport(sock, address))

        server = HTTPServer(hello, config, accept_hook=hook)
        holder.append(server)
        srv = LiveServer(server).start()
        try:
            sock = srv.connect()
            try:
                sock.sendall(b"GET /hooked HTTP/1.1\r\n\r\n")
                assert read_response(sock)[2] == b"hello /hooked"
            finally:
                sock.close()
        finally:
            srv.stop()

        assert len(accepted) == 1
        assert accepted[0][0] == "127.0.0.1"

    def test_hook_that_drops_connections(self, config):
        server = HTTPServer(hello, config, accept_hook=lambda sock, address: sock.close())
        srv = LiveServer(server).start()
        try:
            sock = srv.connect()
            try:
                assert read_until_closed(sock) == b""
            finally:
                sock.close()
        finally:
            srv.stop()

    def test_register_upgrade(self, live_server):
        def echo_protocol(request, head):
            transport = request.transport
            transport.sendall(b"HTTP/1.1 101 Switching Protocols\r\nUpgrade: echo\r\n\r\n" + head)
            transport.close()

        srv = live_server(hello)
        srv.server.register_upgrade(FunctionUpgradeHandler(echo_protocol, ["echo"]))

        sock = srv.connect()
        try:
            sock.sendall(b"GET / HTTP/1.1\r\nUpgrade: echo\r\nConnection: Upgrade\r\n\r\nping")
            data = read_until_closed(sock)
        finally:
            sock.close()

        assert data.startswith(b"HTTP/1.1 101 Switching Protocols\r\n")
        assert data.endswith(b"\r\n\r\nping")

    def test_close_leaves_upgraded_socket_alone(self, live_server):
        proceed = threading.Event()

        def hold(request, head):
            transport = request.transport
            transport.sendall(b"HTTP/1.1 101 Switching Protocols\r\nUpgrade: echo\r\n\r\n")
            proceed.wait(5.0)
            transport.sendall(b"after server close")
            transport.close()

        srv = live_server(hello, upgrade_handlers=[FunctionUpgradeHandler(hold, ["echo"])])
        sock = srv.connect()
        try:
            sock.sendall(b"GET / HTTP/1.1\r\nUpgrade: echo\r\nConnection: Upgrade\r\n\r\n")
            assert ResponseReader(sock).read()[0] == "HTTP/1.1 101 Switching Protocols"
            assert wait_for(lambda: srv.server.active_connections == 0)

            srv.stop()
            proceed.set()

            assert read_until_closed(sock) == b"after server close"
        finally:
            proceed.set()
            sock.close()
