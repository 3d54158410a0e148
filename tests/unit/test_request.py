"""
Unit tests for the Request object model.
"""

import pytest

from embedhttp.http.request import Request, RequestBody


def make_request(method="GET", url="/", version=(1, 1), headers=()):
    request = Request()
    request.method = method
    request.url = url
    request.version = version
    for name, value in headers:
        request.headers.add(name, value)
    return request


class FakeTransport:
    address = ("10.0.0.7", 5555)


class FakeConnection:
    transport = FakeTransport()


class TestDerivedValues:
    """Values computed from the request line and headers."""

    def test_path_and_query(self):
        request = make_request(url="/api/users?page=1&limit=10")

        assert request.path == "/api/users"
        assert request.query == "page=1&limit=10"
        assert request.query_params == {"page": ["1"], "limit": ["10"]}

    def test_path_is_unquoted(self):
        request = make_request(url="/files/my%20doc.txt")
        assert request.path == "/files/my doc.txt"

    def test_empty_path_defaults_to_root(self):
        assert make_request(url="?x=1").path == "/"

    def test_query_list_keeps_blanks(self):
        request = make_request(url="/?a=1&a=2&b=")
        assert request.query_params == {"a": ["1", "2"], "b": [""]}

    def test_http_version_string(self):
        assert make_request(version=(1, 0)).http_version == "HTTP/1.0"
        assert make_request().http_version == "HTTP/1.1"

    def test_content_length(self):
        assert make_request(headers=[("Content-Length", "42")]).content_length == 42
        assert make_request().content_length is None

    def test_get_header_default(self):
        request = make_request(headers=[("User-Agent", "pytest")])

        assert request.get_header("user-agent") == "pytest"
        assert request.get_header("x-missing") is None
        assert request.get_header("x-missing", "d") == "d"

    def test_upgrade(self):
        assert make_request(headers=[("Upgrade", "websocket")]).upgrade == "websocket"
        assert make_request().upgrade is None


class TestKeepAlive:
    """Client keep-alive wishes per HTTP version."""

    @pytest.mark.parametrize("version,connection,expected", [
        ((1, 1), None, True),
        ((1, 1), "close", False),
        ((1, 1), "keep-alive, Close", False),
        ((1, 0), None, False),
        ((1, 0), "keep-alive", True),
        ((1, 0), "Keep-Alive", True),
    ])
    def test_keep_alive(self, version, connection, expected):
        headers = [("Connection", connection)] if connection else []
        assert make_request(version=version, headers=headers).keep_alive is expected

    def test_expects_continue(self):
        assert make_request(headers=[("Expect", "100-continue")]).expects_continue
        assert not make_request(version=(1, 0), headers=[("Expect", "100-continue")]).expects_continue
        assert not make_request().expects_continue


class TestLifecycle:
    """Reuse across exchanges and the connection back-reference."""

    def test_reset_clears_in_place(self):
        request = make_request("POST", "/x", (1, 0), [("A", "1")])
        request.trailers.add("T", "2")
        request.head = b"leftover"
        request._active = True
        headers = request.headers

        request.reset()

        assert request.method == ""
        assert request.url == ""
        assert request.version == (1, 1)
        assert len(request.headers) == 0
        assert len(request.trailers) == 0
        assert request.head == b""
        assert not request.active
        # same object, reused
        assert request.headers is headers

    def test_connection_is_weak(self):
        connection = FakeConnection()
        request = Request(connection)

        assert request.connection is connection
        assert request.transport is connection.transport
        assert request.client_address == ("10.0.0.7", 5555)

        del connection
        assert request.connection is None
        assert request.transport is None
        assert request.client_address == ("", 0)

    def test_detached_request(self):
        request = Request()
        assert request.connection is None
        assert request.transport is None


class TestRequestBody:
    """Lazy body iteration."""

    def test_pulls_chunks_until_empty(self):
        chunks = [b"ab", b"cd", b""]
        body = RequestBody(lambda: chunks.pop(0))

        assert not body.done
        assert list(body) == [b"ab", b"cd"]
        assert body.done
        assert body.bytes_read == 4

    def test_read_concatenates(self):
        chunks = [b"hello ", b"world", b""]
        body = RequestBody(lambda: chunks.pop(0))
        assert body.read() == b"hello world"

    def test_single_pass(self):
        chunks = [b"x", b""]
        body = RequestBody(lambda: chunks.pop(0))

        assert body.read() == b"x"
        assert body.read() == b""
        assert body.read_chunk() == b""

    def test_no_source_is_empty(self):
        body = RequestBody()
        assert body.done
        assert body.read() == b""

    def test_source_errors_propagate(self):
        def source():
            raise ConnectionError("gone")

        body = RequestBody(source)
        with pytest.raises(ConnectionError):
            body.read()
