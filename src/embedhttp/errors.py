"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the server core knows about is one of these exceptions.
They carry enough metadata (a kind, an HTTP status code) for the
connection to decide what to put on the wire before it closes.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHO RAISES WHAT, AND WHAT HAPPENS                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  MalformedRequest      Parser can't make sense of the bytes          │
    │     └── best-effort 4xx/5xx (if nothing written), then close         │
    │                                                                      │
    │  UnsupportedUpgrade    Upgrade asked for, nobody serves it           │
    │     └── close (the client already stopped speaking HTTP)             │
    │                                                                      │
    │  PrematureDisconnect   Peer vanished mid-request / mid-response      │
    │     └── abandon the exchange, release everything                     │
    │                                                                      │
    │  ResponseStateError    Handler called write_head() twice, wrote      │
    │                        after end(), touched frozen headers, ...      │
    │     └── raised straight back into the handler                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

None of these are retried. An exchange that hits one of them is over,
and keep-alive reuse only happens after a clean response.

=============================================================================
"""

from enum import Enum


class HTTPServerError(Exception):
    """Base class for every error raised by embedhttp."""


class MalformedKind(Enum):
    """
    What part of the request grammar was violated.

    Each member also carries the status code we answer with (best effort)
    before closing the connection.
    """
    REQUEST_LINE = ("request_line", 400)            # "GET /  " - garbled tokens
    HEADER = ("header", 400)                        # bad name / obs-fold
    CONTENT_LENGTH = ("content_length", 400)        # non-numeric or conflicting
    CHUNK = ("chunk", 400)                          # chunked-encoding violation
    HEAD_TOO_LARGE = ("head_too_large", 431)        # line + headers over limit
    TRANSFER_ENCODING = ("transfer_encoding", 501)  # coding we don't implement
    VERSION = ("version", 505)                      # not HTTP/1.0 or HTTP/1.1

    def __init__(self, label: str, status_code: int):
        self.label = label
        self.status_code = status_code


class MalformedRequest(HTTPServerError):
    """
    Raised (or carried in a ParseError event) when the request bytes do not
    form valid HTTP/1.x.

    The request is never dispatched. The connection answers with
    ``status_code`` if it hasn't written anything yet and then closes,
    because after a parse error we can no longer trust where the next
    request line starts.

    Attributes:
        kind: Which grammar rule failed.
        status_code: HTTP status to answer with.
    """

    def __init__(self, kind: MalformedKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.status_code = kind.status_code


class UnsupportedUpgrade(HTTPServerError):
    """An Upgrade header was present but no upgrade handler accepted it."""

    def __init__(self, protocol: str):
        super().__init__(f"No upgrade handler accepted protocol {protocol!r}")
        self.protocol = protocol


class PrematureDisconnect(HTTPServerError):
    """The transport closed before the current exchange finished."""


class ResponseStateError(HTTPServerError):
    """A Response method was called in a state that doesn't allow it."""


class HeadersFrozenError(ResponseStateError):
    """Headers were modified after the response head was sent."""
