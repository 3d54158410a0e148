"""
=============================================================================
EMBEDHTTP - Embeddable HTTP/1.x Server Core
=============================================================================

An HTTP/1.x server you embed in your own program. It accepts TCP
connections, parses each request stream incrementally, hands every
request to your handler as a (request, response) pair, streams the
response back, keeps connections alive across requests, and hands the
socket over when a client asks to switch protocols.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    embedhttp/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # Demo server (python -m embedhttp)
    ├── server.py            # HTTPServer facade
    ├── config.py            # ServerConfig dataclass
    ├── errors.py            # Exception hierarchy
    ├── access_log.py        # Per-exchange access log records
    ├── core/                # Connection-level machinery
    │   ├── transport.py     # Transport interface, SocketTransport
    │   ├── connection.py    # Per-connection state machine
    │   ├── dispatcher.py    # Calls the application handler
    │   ├── upgrade.py       # Protocol upgrade handoff
    │   └── listener.py      # Listening socket + accept loop
    └── http/                # HTTP message model
        ├── headers.py       # Ordered case-insensitive multimap
        ├── parser.py        # Incremental request parser
        ├── request.py       # Request, lazy RequestBody
        ├── response.py      # Streaming Response
        └── status_codes.py  # HTTP status enum

=============================================================================
QUICK START
=============================================================================

    from embedhttp import HTTPServer, ServerConfig

    def handler(request, response):
        if request.method == "POST":
            response.write_head(200, headers={"Content-Type": "text/plain"})
            for chunk in request.body:          # streamed, not buffered
                response.write(chunk)
            response.end()
        else:
            response.send_json({"path": request.path})

    server = HTTPServer(handler, ServerConfig(port=8080))
    server.run()                                # blocks until Ctrl+C

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .core.transport import SocketTransport, Transport
from .core.upgrade import FunctionUpgradeHandler, UpgradeHandler
from .errors import (
    HeadersFrozenError,
    HTTPServerError,
    MalformedKind,
    MalformedRequest,
    PrematureDisconnect,
    ResponseStateError,
    UnsupportedUpgrade,
)
from .http.headers import Headers
from .http.request import Request
from .http.response import Response, ResponseState
from .http.status_codes import HTTPStatus
from .server import HTTPServer

__all__ = [
    "HTTPServer",
    "ServerConfig",
    # message model
    "Headers",
    "Request",
    "Response",
    "ResponseState",
    "HTTPStatus",
    # extension points
    "Transport",
    "SocketTransport",
    "UpgradeHandler",
    "FunctionUpgradeHandler",
    # errors
    "HTTPServerError",
    "MalformedKind",
    "MalformedRequest",
    "UnsupportedUpgrade",
    "PrematureDisconnect",
    "ResponseStateError",
    "HeadersFrozenError",
    "__version__",
]
