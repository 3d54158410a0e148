"""
=============================================================================
INCREMENTAL HTTP REQUEST PARSER
=============================================================================

Turns a stream of bytes into a stream of parse EVENTS. Unlike a one-shot
parser that needs the whole request in memory, this one can be fed bytes
as they trickle in from the socket, split at ANY boundary:

    receive_data(b"GET /a HT")      next_event() → NEED_DATA
    receive_data(b"TP/1.1\\r\\nHo")   next_event() → RequestLine("GET", "/a", (1, 1))
                                    next_event() → NEED_DATA
    receive_data(b"st: x\\r\\n\\r\\n")  next_event() → HeaderField("Host", "x")
                                    next_event() → HeadersEnd(has_body=False, ...)
                                    next_event() → MessageEnd()

=============================================================================
EVENTS
=============================================================================

    ┌────────────────┬────────────────────────────────────────────────────┐
    │ Event          │ Emitted when                                       │
    ├────────────────┼────────────────────────────────────────────────────┤
    │ RequestLine    │ "METHOD SP target SP HTTP/x.y" line complete       │
    │ HeaderField    │ one "Name: value" line complete (also trailers)    │
    │ HeadersEnd     │ blank line after the headers; framing is decided   │
    │ BodyChunk      │ some body bytes are available (decoded if chunked) │
    │ MessageEnd     │ the body (if any) is complete                      │
    │ ParseError     │ grammar violation - parser is dead from here on    │
    └────────────────┴────────────────────────────────────────────────────┘

=============================================================================
PARSER STATES
=============================================================================

    REQUEST_LINE ──► HEADERS ──┬──► DONE  (no body)
                               │
                               ├──► BODY_LENGTH ─────────────────► DONE
                               │
                               ├──► CHUNK_SIZE ◄──► CHUNK_DATA
                               │        │                │
                               │        └─► TRAILERS ─► DONE
                               │
                               └──► PAUSED  (Upgrade: everything after the
                                             blank line belongs to the next
                                             protocol - see trailing())

    Any state ──► ERROR on a grammar violation.

After MessageEnd the caller decides whether to continue with
start_next_message() (keep-alive; buffered pipelined bytes are kept) or
to stop.

=============================================================================
BODY FRAMING (RFC 7230 §3.3.3)
=============================================================================

    Transfer-Encoding: ..., chunked    → chunked body
    Transfer-Encoding: gzip (no chunked) → 501, we can't find the end
    Transfer-Encoding + Content-Length → 400, classic smuggling vector
    Content-Length: N                  → exactly N bytes
    neither                            → no body (requests never use
                                         close-delimited bodies)

=============================================================================
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Tuple, Union

from ..errors import MalformedKind, MalformedRequest
from .headers import TOKEN_PATTERN


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class RequestLine:
    method: str
    target: str
    version: Tuple[int, int]


@dataclass(frozen=True)
class HeaderField:
    name: str
    value: str
    trailer: bool = False


@dataclass(frozen=True)
class HeadersEnd:
    """
    The head is complete and the body framing is known.

    Attributes:
        has_body: A body follows (Content-Length > 0 or chunked).
        chunked: The body uses chunked transfer coding.
        content_length: Declared length, or None if chunked/absent.
        upgrade: The Upgrade header was present - parsing is paused and the
                 remaining bytes are the new protocol's (see trailing()).
    """
    has_body: bool
    chunked: bool = False
    content_length: Optional[int] = None
    upgrade: bool = False


@dataclass(frozen=True)
class BodyChunk:
    data: bytes


@dataclass(frozen=True)
class MessageEnd:
    pass


@dataclass(frozen=True)
class ParseError:
    error: MalformedRequest


class _NeedData:
    """Sentinel: the buffer doesn't hold a complete grammatical unit yet."""

    def __repr__(self):
        return "NEED_DATA"


NEED_DATA = _NeedData()

Event = Union[RequestLine, HeaderField, HeadersEnd, BodyChunk, MessageEnd, ParseError]


class ParserState(Enum):
    REQUEST_LINE = "request_line"
    HEADERS = "headers"
    BODY_LENGTH = "body_length"
    CHUNK_SIZE = "chunk_size"
    CHUNK_DATA = "chunk_data"
    CHUNK_CRLF = "chunk_crlf"
    TRAILERS = "trailers"
    DONE = "done"
    PAUSED = "paused"
    ERROR = "error"


class RequestParser:
    """
    Incremental HTTP/1.x request parser.

    Usage:
        parser = RequestParser()
        parser.receive_data(sock.recv(8192))
        for event in parser.events():
            ...

    next_event() returns one event at a time, NEED_DATA when the buffer runs
    dry, or None once the peer's EOF has been seen and nothing else can be
    produced.
    """

    # METHOD SP request-target SP HTTP-version
    REQUEST_LINE_PATTERN = re.compile(
        r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) ([^\s]+) HTTP/(\d)\.(\d)$"
    )

    # field-name ":" OWS field-value OWS
    HEADER_PATTERN = re.compile(r"^([^:\s]+):[ \t]*(.*?)[ \t]*$")

    # chunk-size [ chunk-ext ]
    CHUNK_SIZE_PATTERN = re.compile(r"^([0-9A-Fa-f]+)[ \t]*(;.*)?$")

    SUPPORTED_VERSIONS = ((1, 0), (1, 1))

    # hex size + extensions; nobody legitimate needs more
    MAX_CHUNK_LINE = 4096

    def __init__(self, max_head_size: int = 64 * 1024):
        """
        Args:
            max_head_size: Limit on request line + header bytes. A head
                           that grows past it is rejected with 431.
        """
        self.max_head_size = max_head_size
        self._buffer = bytearray()
        self._eof = False
        self._error: Optional[ParseError] = None
        self.state = ParserState.REQUEST_LINE
        self._reset_message()

    def _reset_message(self) -> None:
        self._head_bytes = 0
        self._content_length: Optional[int] = None
        self._transfer_codings = []
        self._upgrade = False
        self._remaining = 0

    # =========================================================================
    # INPUT
    # =========================================================================

    def receive_data(self, data: bytes) -> None:
        """Append bytes read from the transport."""
        if data:
            self._buffer += data

    def receive_eof(self) -> None:
        """The peer closed its sending side; no more bytes will arrive."""
        self._eof = True

    def start_next_message(self) -> None:
        """
        Prepare for the next request on a keep-alive connection.

        Only legal after MessageEnd. Bytes already buffered (pipelined
        requests) are kept and will be parsed next.
        """
        if self.state is not ParserState.DONE:
            raise RuntimeError(f"Can't start a new message in state {self.state.value}")
        self.state = ParserState.REQUEST_LINE
        self._reset_message()

    def trailing(self) -> bytes:
        """Unconsumed buffered bytes (the upgrade head after PAUSED)."""
        return bytes(self._buffer)

    @property
    def message_complete(self) -> bool:
        return self.state is ParserState.DONE

    @property
    def idle(self) -> bool:
        """
        True between messages: nothing of the next request has arrived yet.

        EOF while idle is a normal close; EOF otherwise is premature.
        """
        return (
            self.state is ParserState.REQUEST_LINE
            and self._head_bytes == 0
            and not self._buffer.strip()
        )

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def events(self) -> Iterator[Event]:
        """Yield events until more data is needed (or the parser stops)."""
        while True:
            event = self.next_event()
            if event is NEED_DATA or event is None:
                return
            yield event
            if isinstance(event, ParseError):
                return

    def next_event(self):
        """
        Advance the parse by one grammatical unit.

        Returns:
            An event, NEED_DATA if more bytes are required, or None if the
            peer hit EOF and no further event can be produced.
        """
        if self._error is not None:
            return self._error
        try:
            event = self._step()
        except MalformedRequest as e:
            self.state = ParserState.ERROR
            self._error = ParseError(e)
            return self._error
        if event is NEED_DATA and self._eof:
            return None
        return event

    def _step(self):
        state = self.state

        if state is ParserState.REQUEST_LINE:
            return self._parse_request_line()
        if state is ParserState.HEADERS:
            return self._parse_header_line(trailer=False)
        if state is ParserState.BODY_LENGTH:
            return self._parse_fixed_body()
        if state is ParserState.CHUNK_SIZE:
            return self._parse_chunk_size()
        if state is ParserState.CHUNK_DATA:
            return self._parse_chunk_data()
        if state is ParserState.CHUNK_CRLF:
            return self._parse_chunk_crlf()
        if state is ParserState.TRAILERS:
            return self._parse_header_line(trailer=True)

        # DONE and PAUSED produce nothing until the caller moves us on.
        return NEED_DATA

    # =========================================================================
    # LINE HANDLING
    # =========================================================================

    def _take_line(self, limit: int) -> Optional[str]:
        """
        Pop one line (without its terminator) off the buffer.

        CRLF is the standard terminator; a bare LF is tolerated as
        RFC 7230 §3.5 suggests. Returns None if no full line is buffered.
        """
        end = self._buffer.find(b"\n")
        if end == -1:
            if len(self._buffer) > limit:
                self._raise_too_large()
            return None
        if end > limit:
            self._raise_too_large()
        raw = bytes(self._buffer[:end])
        del self._buffer[:end + 1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        self._head_bytes += end + 1
        # latin-1 maps every byte, so odd header bytes survive decoding
        return raw.decode("latin-1")

    def _head_budget(self) -> int:
        return self.max_head_size - self._head_bytes

    def _raise_too_large(self):
        if self.state is ParserState.REQUEST_LINE:
            raise MalformedRequest(MalformedKind.HEAD_TOO_LARGE, "Request line too long")
        if self.state is ParserState.CHUNK_SIZE:
            raise MalformedRequest(MalformedKind.CHUNK, "Chunk size line too long")
        raise MalformedRequest(MalformedKind.HEAD_TOO_LARGE, "Request head too large")

    # =========================================================================
    # REQUEST LINE
    # =========================================================================

    def _parse_request_line(self):
        while True:
            line = self._take_line(self._head_budget())
            if line is None:
                return NEED_DATA
            if line:
                break
            # Robustness: ignore empty lines before the request line
            # (some clients send an extra CRLF after a POST body).
            self._head_bytes = 0

        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise MalformedRequest(
                MalformedKind.REQUEST_LINE, f"Invalid request line: {line!r}"
            )

        method, target, major, minor = match.groups()
        version = (int(major), int(minor))
        if version not in self.SUPPORTED_VERSIONS:
            raise MalformedRequest(
                MalformedKind.VERSION, f"Unsupported HTTP version: {major}.{minor}"
            )

        self.state = ParserState.HEADERS
        return RequestLine(method, target, version)

    # =========================================================================
    # HEADERS / TRAILERS
    # =========================================================================

    def _parse_header_line(self, trailer: bool):
        line = self._take_line(self._head_budget())
        if line is None:
            return NEED_DATA

        if not line:
            if trailer:
                self.state = ParserState.DONE
                return MessageEnd()
            return self._finish_headers()

        if line[0] in (" ", "\t"):
            # obs-fold (RFC 7230 §3.2.4): a server MAY reject it, we do
            raise MalformedRequest(MalformedKind.HEADER, "Obsolete header line folding")

        match = self.HEADER_PATTERN.match(line)
        if not match or not TOKEN_PATTERN.match(match.group(1)):
            raise MalformedRequest(MalformedKind.HEADER, f"Invalid header line: {line!r}")

        name, value = match.groups()
        if "\x00" in value:
            raise MalformedRequest(MalformedKind.HEADER, f"NUL byte in header {name!r}")

        if not trailer:
            self._observe_header(name.lower(), value)
        return HeaderField(name, value, trailer)

    def _observe_header(self, name: str, value: str) -> None:
        """Record the headers that decide body framing as they stream by."""
        if name == "content-length":
            if not value.isdigit():
                raise MalformedRequest(
                    MalformedKind.CONTENT_LENGTH, f"Invalid Content-Length: {value!r}"
                )
            length = int(value)
            if self._content_length is not None and self._content_length != length:
                raise MalformedRequest(
                    MalformedKind.CONTENT_LENGTH, "Conflicting Content-Length values"
                )
            self._content_length = length
        elif name == "transfer-encoding":
            codings = [c.strip().lower() for c in value.split(",") if c.strip()]
            self._transfer_codings.extend(codings)
        elif name == "upgrade":
            self._upgrade = True

    def _finish_headers(self) -> HeadersEnd:
        if self._upgrade:
            # Everything after the blank line belongs to the next protocol.
            self.state = ParserState.PAUSED
            return HeadersEnd(has_body=False, upgrade=True)

        if self._transfer_codings:
            if self._content_length is not None:
                raise MalformedRequest(
                    MalformedKind.CONTENT_LENGTH,
                    "Both Transfer-Encoding and Content-Length present",
                )
            if self._transfer_codings[-1] != "chunked":
                raise MalformedRequest(
                    MalformedKind.TRANSFER_ENCODING,
                    f"Unsupported transfer coding: {self._transfer_codings[-1]!r}",
                )
            self.state = ParserState.CHUNK_SIZE
            return HeadersEnd(has_body=True, chunked=True)

        # With no body _parse_fixed_body() emits MessageEnd straight away,
        # so every message ends with MessageEnd.
        self._remaining = self._content_length or 0
        self.state = ParserState.BODY_LENGTH
        return HeadersEnd(
            has_body=self._remaining > 0, content_length=self._content_length
        )

    # =========================================================================
    # BODY
    # =========================================================================

    def _parse_fixed_body(self):
        if self._remaining == 0:
            self.state = ParserState.DONE
            return MessageEnd()
        if not self._buffer:
            return NEED_DATA
        data = bytes(self._buffer[:self._remaining])
        del self._buffer[:len(data)]
        self._remaining -= len(data)
        return BodyChunk(data)

    def _parse_chunk_size(self):
        line = self._take_line(self.MAX_CHUNK_LINE)
        if line is None:
            return NEED_DATA
        match = self.CHUNK_SIZE_PATTERN.match(line.strip())
        if not match:
            raise MalformedRequest(MalformedKind.CHUNK, f"Invalid chunk size line: {line!r}")
        size = int(match.group(1), 16)
        if size == 0:
            self._head_bytes = 0
            self.state = ParserState.TRAILERS
            return self._parse_header_line(trailer=True)
        self._remaining = size
        self.state = ParserState.CHUNK_DATA
        return self._parse_chunk_data()

    def _parse_chunk_data(self):
        if not self._buffer:
            return NEED_DATA
        data = bytes(self._buffer[:self._remaining])
        del self._buffer[:len(data)]
        self._remaining -= len(data)
        if self._remaining == 0:
            self.state = ParserState.CHUNK_CRLF
        return BodyChunk(data)

    def _parse_chunk_crlf(self):
        if len(self._buffer) < 1:
            return NEED_DATA
        if self._buffer[:1] == b"\n":
            del self._buffer[:1]
        elif len(self._buffer) < 2:
            return NEED_DATA
        elif self._buffer[:2] == b"\r\n":
            del self._buffer[:2]
        else:
            raise MalformedRequest(MalformedKind.CHUNK, "Missing CRLF after chunk data")
        self.state = ParserState.CHUNK_SIZE
        return self._parse_chunk_size()
