"""
=============================================================================
HTTP REQUEST
=============================================================================

The request side of one HTTP exchange, as handed to the application
handler together with its Response.

=============================================================================
ONE OBJECT PER CONNECTION, NOT PER REQUEST
=============================================================================

A keep-alive connection may carry hundreds of requests. Rather than
allocating a fresh object for each, the Connection owns ONE Request and
clears it in place between exchanges:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Connection ──owns──► Request ◄──borrowed for one call── handler    │
    │       ▲                   │                                          │
    │       └──── weakref ──────┘  (back-reference, non-owning)            │
    │                                                                      │
    │   exchange 1:  GET /a  → handler(request, response) → reset()        │
    │   exchange 2:  POST /b → handler(request, response) → reset()        │
    │                 ▲                                                    │
    │                 └── same object, fields overwritten                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

CONTRACT: a handler must not keep a reference to the request past the
exchange it was given for. After the response ends, the object is reset
and refilled with the next request on the same connection. Don't use
requests as dict keys to track sessions!

=============================================================================
STREAMING BODY
=============================================================================

The handler is called as soon as the HEADERS are complete - the body may
still be on the wire. `request.body` pulls chunks from the connection on
demand:

    for chunk in request.body:      # reads from the socket lazily
        sink.write(chunk)

    data = request.body.read()      # or everything at once

The body can be read only once; it is not seekable.

=============================================================================
"""

import weakref
from typing import Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import parse_qs, urlsplit, unquote

from .headers import Headers


class RequestBody:
    """
    Lazy, single-pass sequence of body chunks.

    Chunks come from ``source``, a callable that returns the next chunk or
    b"" at the end of the body. Iterating a finished body yields nothing.
    """

    def __init__(self, source: Optional[Callable[[], bytes]] = None):
        self.reset(source)

    def reset(self, source: Optional[Callable[[], bytes]] = None) -> None:
        self._source = source
        self._done = source is None
        self.bytes_read = 0

    @property
    def done(self) -> bool:
        """True once the end of the body has been reached."""
        return self._done

    def read_chunk(self) -> bytes:
        """Return the next chunk, or b"" when the body is exhausted."""
        if self._done:
            return b""
        chunk = self._source()
        if not chunk:
            self._done = True
            return b""
        self.bytes_read += len(chunk)
        return chunk

    def read(self) -> bytes:
        """Read the remaining body into memory."""
        return b"".join(self)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read_chunk()
            if not chunk:
                return
            yield chunk


class Request:
    """
    A parsed HTTP request, reused across a connection's exchanges.

    Attributes:
        method:   Request method token ("GET", "POST", ...).
        url:      Raw request-target, path plus query ("/a/b?x=1").
        version:  (major, minor) tuple, (1, 0) or (1, 1).
        headers:  Request headers (case-insensitive multimap).
        trailers: Trailer fields that followed a chunked body.
        body:     Lazily read RequestBody.
        head:     Bytes read past the header terminator. Only set when
                  the request is an upgrade; they belong to the new protocol.
    """

    def __init__(self, connection=None):
        self._connection_ref = weakref.ref(connection) if connection is not None else None
        self.headers = Headers()
        self.trailers = Headers()
        self.body = RequestBody()
        self.reset()

    def reset(self) -> None:
        """Clear every field in place, ready for the next exchange."""
        self.method = ""
        self.url = ""
        self.version: Tuple[int, int] = (1, 1)
        self.headers.clear()
        self.trailers.clear()
        self.body.reset()
        self.head = b""
        self._active = False
        self._handoff = None

    # =========================================================================
    # CONNECTION ACCESS
    # =========================================================================

    @property
    def connection(self):
        """The owning Connection, or None if it has been torn down."""
        if self._connection_ref is None:
            return None
        return self._connection_ref()

    @property
    def transport(self):
        """
        The connection's transport.

        During an upgrade handler call this is the transport the connection
        has already let go of; see UpgradeHandler.
        """
        if self._handoff is not None:
            return self._handoff
        connection = self.connection
        return connection.transport if connection is not None else None

    @property
    def client_address(self) -> Tuple[str, int]:
        transport = self.transport
        return transport.address if transport is not None else ("", 0)

    @property
    def active(self) -> bool:
        """True between dispatch and the end of the bound response."""
        return self._active

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def http_version(self) -> str:
        return f"HTTP/{self.version[0]}.{self.version[1]}"

    @property
    def path(self) -> str:
        """URL-decoded path without the query string."""
        return unquote(urlsplit(self.url).path) or "/"

    @property
    def query(self) -> str:
        return urlsplit(self.url).query

    @property
    def query_params(self) -> Dict[str, list]:
        """
        Parsed query string, every value kept.

            "?a=1&a=2&b=" → {"a": ["1", "2"], "b": [""]}
        """
        return parse_qs(self.query, keep_blank_values=True)

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None or not value.isdigit():
            return None
        return int(value)

    @property
    def keep_alive(self) -> bool:
        """
        Whether the CLIENT asked for the connection to stay open.

        =====================================================================
        KEEP-ALIVE LOGIC
        =====================================================================

        HTTP/1.1 (default: keep-alive):
            Connection: close       → close after response
            (missing)               → keep alive

        HTTP/1.0 (default: close):
            Connection: keep-alive  → keep alive
            (missing)               → close after response

        =====================================================================
        """
        if self.headers.has_token("connection", "close"):
            return False
        if self.version >= (1, 1):
            return True
        return self.headers.has_token("connection", "keep-alive")

    @property
    def upgrade(self) -> Optional[str]:
        """Value of the Upgrade header (e.g. "websocket"), or None."""
        return self.headers.get("upgrade")

    @property
    def expects_continue(self) -> bool:
        """Client sent ``Expect: 100-continue`` and waits before the body."""
        if self.version < (1, 1):
            return False
        return (self.headers.get("expect") or "").lower() == "100-continue"

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of header ``name`` (any case), or ``default``."""
        return self.headers.get(name, default)

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url} {self.http_version}>"
