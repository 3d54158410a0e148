"""
=============================================================================
HTTP RESPONSE
=============================================================================

The response side of one HTTP exchange. Unlike a build-then-serialize
response object, this one STREAMS: the handler writes the head, then body
bytes as they become available, then ends the response. Every call goes
straight to the connection's transport.

=============================================================================
RESPONSE STATES
=============================================================================

    ┌──────────┐  write_head()   ┌───────────┐    end()     ┌─────────┐
    │  UNSENT  │ ──────────────► │ HEAD_SENT │ ───────────► │  ENDED  │
    └──────────┘  (or first      └───────────┘              └─────────┘
         │         write/end)         │  ▲                       │
         │                            └──┘ write()               │
         │                                                       ▼
    headers mutable              headers FROZEN           end() again is a
                                                          no-op; the connection
                                                          decides keep-alive

The head is written to the wire LAZILY, on the first write()/end(). That
lets end(b"...") right after write_head() still send an exact
Content-Length instead of falling back to chunked framing.

=============================================================================
BODY FRAMING
=============================================================================

How does the client know where the body ends? Decided once, when the
head is flushed:

    ┌──────────────────────────────────┬──────────────────────────────────┐
    │ Situation                        │ Framing                          │
    ├──────────────────────────────────┼──────────────────────────────────┤
    │ 1xx / 204 / 304                  │ no body at all                   │
    │ request method was HEAD          │ headers only, body suppressed    │
    │ handler set Transfer-Encoding    │ chunked (if "chunked" listed)    │
    │ handler set Content-Length       │ exactly that many bytes          │
    │ end(data) before any write()     │ Content-Length: len(data)        │
    │ streaming, HTTP/1.1 client       │ Transfer-Encoding: chunked       │
    │ streaming, HTTP/1.0 client       │ until close (forces close)       │
    └──────────────────────────────────┴──────────────────────────────────┘

Chunked framing on the wire:

    1a\\r\\n                       ← chunk size in hex
    abcdefghijklmnopqrstuvwxyz\\r\\n
    0\\r\\n                        ← last chunk
    X-Checksum: 1234\\r\\n         ← optional trailers (add_trailer)
    \\r\\n

=============================================================================
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple, Union

from ..errors import ResponseStateError
from .headers import Headers
from .status_codes import HTTPStatus, has_no_body, reason_phrase


logger = logging.getLogger(__name__)


class ResponseState(Enum):
    UNSENT = "unsent"
    HEAD_SENT = "head_sent"
    ENDED = "ended"


class _Framing(Enum):
    NONE = "none"          # no body allowed
    LENGTH = "length"      # Content-Length
    CHUNKED = "chunked"    # Transfer-Encoding: chunked
    CLOSE = "close"        # body ends when the connection closes


class Response:
    """
    Streaming HTTP response bound to one connection.

    The connection prepares it for each exchange (client version, method,
    keep-alive wish) and resets it in place afterwards, so - like Request -
    a handler must not hold on to it after calling end().

    Usage:
        def handler(request, response):
            response.write_head(200, headers={"Content-Type": "text/plain"})
            response.write(b"Hello ")
            response.end(b"World\\n")

    The ``connection`` collaborator needs two methods:
        send(data: bytes) -> bool       write raw bytes to the transport
        response_ended(response)        the exchange's response is complete
    """

    def __init__(self, connection=None, server_name: Optional[str] = "embedhttp"):
        self._connection = connection
        self.server_name = server_name
        self.headers = Headers()
        self.trailers = Headers()
        self.reset()

    def reset(self) -> None:
        """Return every field to its default for the next exchange."""
        self.status_code = int(HTTPStatus.OK)
        self.reason: Optional[str] = None
        self.headers.clear()
        self.trailers.clear()
        self.state = ResponseState.UNSENT
        self.bytes_written = 0

        self._version: Tuple[int, int] = (1, 1)
        self._method = "GET"
        self._client_keep_alive = True
        self._force_close = False
        self._head_flushed = False
        self._continue_sent = False
        self._framing = _Framing.NONE
        self._declared_length: Optional[int] = None

    def prepare(self, version: Tuple[int, int], method: str, keep_alive: bool) -> None:
        """
        Bind the response to the request it answers.

        Called by the connection before dispatch.

        Args:
            version: The client's HTTP version; decides chunked vs close.
            method: The request method; HEAD suppresses the body.
            keep_alive: Whether the client (and server config) allow reuse.
        """
        self._version = version
        self._method = method
        self._client_keep_alive = keep_alive

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def head_sent(self) -> bool:
        return self.state is not ResponseState.UNSENT

    @property
    def ended(self) -> bool:
        return self.state is ResponseState.ENDED

    @property
    def continue_sent(self) -> bool:
        return self._continue_sent

    @property
    def keep_alive(self) -> bool:
        """
        Final keep-alive decision for this exchange.

        False if the client didn't ask for it, the handler called
        close_connection() or set ``Connection: close``, or the chosen
        framing needs the close to mark the end of the body.
        """
        if self._force_close or not self._client_keep_alive:
            return False
        return not self.headers.has_token("connection", "close")

    def close_connection(self) -> None:
        """
        Close the connection once this response is complete.

        Before the head is flushed this also puts ``Connection: close`` on
        the wire. Afterwards the client only learns it from the close.
        """
        self._force_close = True

    # =========================================================================
    # HEADERS
    # =========================================================================

    def set_header(self, name: str, value) -> None:
        self._check_unsent("set headers")
        self.headers.set(name, value)

    def add_header(self, name: str, value) -> None:
        self._check_unsent("add headers")
        self.headers.add(name, value)

    def remove_header(self, name: str) -> None:
        self._check_unsent("remove headers")
        self.headers.remove(name)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    def add_trailer(self, name: str, value) -> None:
        """
        Queue a trailer field, sent after the last chunk.

        Only chunked bodies carry trailers; for any other framing they are
        dropped (with a debug log) when the response ends.
        """
        if self.ended:
            raise ResponseStateError("Can't add trailers after end()")
        self.trailers.add(name, value)

    def _check_unsent(self, action: str) -> None:
        if self.state is not ResponseState.UNSENT:
            raise ResponseStateError(f"Can't {action} after the head was sent")

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_continue(self) -> bool:
        """
        Send an interim ``100 Continue``.

        Only for HTTP/1.1 clients, only before the head, and only once.
        Returns True if the interim response was written.
        """
        if self.head_sent or self._continue_sent or self._version < (1, 1):
            return False
        self._continue_sent = True
        return self._send(b"HTTP/1.1 100 Continue\r\n\r\n")

    def write_head(
        self,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        headers=None,
    ) -> None:
        """
        Fix the status line and headers.

        After this call headers are frozen. The bytes are flushed on the
        first write()/end().

        Args:
            status_code: Status to send (default: current status_code).
            reason: Custom reason phrase (default: the standard one).
            headers: Extra headers to add, mapping or (name, value) pairs.

        Raises:
            ResponseStateError: The head was already written.
        """
        self._check_unsent("write the head twice")
        if status_code is not None:
            if not 100 <= int(status_code) <= 599:
                raise ValueError(f"Invalid status code: {status_code}")
            self.status_code = int(status_code)
        if reason is not None:
            self.reason = reason
        if headers:
            self.headers.update(headers)
        self.headers.freeze()
        self.state = ResponseState.HEAD_SENT

    def write(self, data: Union[bytes, str]) -> bool:
        """
        Stream body bytes.

        Returns:
            True if the bytes were handed to the transport, False if the
            connection is gone.

        Raises:
            ResponseStateError: After end(), or past a declared Content-Length.
        """
        if self.ended:
            raise ResponseStateError("Can't write after end()")
        if self.state is ResponseState.UNSENT:
            self.write_head()
        data = _to_bytes(data)
        if not self._head_flushed:
            if not self._flush_head(final=False, body=b""):
                return False
        if not data:
            return True
        return self._write_body(data)

    def end(self, data: Union[bytes, str] = b"") -> bool:
        """
        Finish the response.

        Writes ``data`` and any terminal framing, then hands the connection
        back for its keep-alive decision. Calling end() again is a no-op.

        Returns:
            True if this call completed the response; False if it was
            already ended or the connection is gone.
        """
        if self.ended:
            logger.debug("end() called on a finished response; ignoring")
            return False
        if self.state is ResponseState.UNSENT:
            self.write_head()
        data = _to_bytes(data)

        if not self._head_flushed:
            ok = self._flush_head(final=True, body=data)
        else:
            ok = self._write_body(data) if data else True
            if ok:
                ok = self._write_terminator()

        if (
            self._framing is _Framing.LENGTH
            and self._method != "HEAD"
            and self.bytes_written < (self._declared_length or 0)
        ):
            # The client is still waiting for bytes that will never come.
            logger.warning(
                "Response ended after %d of %d declared bytes; closing connection",
                self.bytes_written, self._declared_length,
            )
            self._force_close = True

        self._finish()
        return ok

    def abort(self) -> None:
        """
        Give up on the exchange without terminal framing.

        The connection will close, which is the only honest way to tell the
        client the response is incomplete.
        """
        if self.ended:
            return
        self._force_close = True
        self._finish()

    def rewind(self) -> bool:
        """
        Go back to UNSENT if no byte of the head has reached the wire.

        Headers and trailers are dropped. Used to replace a response that
        failed before its head was flushed with an error response.

        Returns:
            True if the response can be started over.
        """
        if self._head_flushed or self.ended:
            return False
        self.state = ResponseState.UNSENT
        self.reason = None
        self.headers.clear()
        self.trailers.clear()
        self._framing = _Framing.NONE
        self._declared_length = None
        return True

    def _finish(self) -> None:
        self.state = ResponseState.ENDED
        if self._connection is not None:
            self._connection.response_ended(self)

    # =========================================================================
    # CONVENIENCE
    # =========================================================================

    def send_text(self, body: str, status_code: int = 200,
                  content_type: str = "text/plain; charset=utf-8") -> bool:
        """Write a complete text response in one call."""
        self.set_header("Content-Type", content_type)
        self.write_head(status_code)
        return self.end(body.encode("utf-8"))

    def send_json(self, data: Any, status_code: int = 200) -> bool:
        """Write a complete JSON response in one call."""
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.set_header("Content-Type", "application/json; charset=utf-8")
        self.write_head(status_code)
        return self.end(body)

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @property
    def status_line(self) -> str:
        """
        Format: HTTP-VERSION SP STATUS-CODE SP REASON-PHRASE

        We always answer as HTTP/1.1 - the highest version we speak - even
        to HTTP/1.0 clients (RFC 7230 §2.6).
        """
        reason = self.reason if self.reason is not None else reason_phrase(self.status_code)
        return f"HTTP/1.1 {self.status_code} {reason}"

    def _choose_framing(self, final: bool, body: bytes) -> Tuple[_Framing, list]:
        """Decide how the body is delimited. Returns (framing, extra headers)."""
        extra = []
        if has_no_body(self.status_code):
            return _Framing.NONE, extra

        te = self.headers.get("transfer-encoding")
        if te is not None:
            if self.headers.has_token("transfer-encoding", "chunked"):
                return _Framing.CHUNKED, extra
            return _Framing.CLOSE, extra

        declared = self.headers.get("content-length")
        if declared is not None:
            if not declared.isdigit():
                raise ResponseStateError(f"Invalid Content-Length header: {declared!r}")
            self._declared_length = int(declared)
            return _Framing.LENGTH, extra

        if final:
            if self._method == "HEAD" and not body:
                # A HEAD handler that ends without a body tells us nothing
                # about the GET length; don't invent "Content-Length: 0".
                return _Framing.NONE, extra
            self._declared_length = len(body)
            extra.append(("Content-Length", str(len(body))))
            return _Framing.LENGTH, extra

        if self._version >= (1, 1):
            extra.append(("Transfer-Encoding", "chunked"))
            return _Framing.CHUNKED, extra

        return _Framing.CLOSE, extra

    def _serialize_head(self, extra) -> bytes:
        keep_alive = self.keep_alive
        lines = [self.status_line]
        for name, value in self.headers.items():
            if not keep_alive and name.lower() == "connection":
                value = _drop_token(value, "keep-alive")
                if not value:
                    continue
            lines.append(f"{name}: {value}")
        for name, value in extra:
            lines.append(f"{name}: {value}")

        if not keep_alive:
            if not self.headers.has_token("connection", "close"):
                lines.append("Connection: close")
        elif self._version < (1, 1) and not self.headers.has_token("connection", "keep-alive"):
            lines.append("Connection: keep-alive")

        if "date" not in self.headers:
            lines.append(f"Date: {format_http_date(datetime.now(timezone.utc))}")
        if self.server_name and "server" not in self.headers:
            lines.append(f"Server: {self.server_name}")

        lines.append("")
        lines.append("")
        return "\r\n".join(lines).encode("latin-1")

    def _flush_head(self, final: bool, body: bytes) -> bool:
        framing, extra = self._choose_framing(final, body)

        # Build the body part first: a body longer than the declared
        # Content-Length raises here, before anything is committed.
        payload = b""
        if final and body and self._body_allowed(framing):
            if framing is _Framing.CHUNKED:
                payload = self._chunk(body)
            elif framing is _Framing.LENGTH:
                payload = self._clip(body)
            else:
                payload = body
        if final and framing is _Framing.CHUNKED:
            payload += self._last_chunk()

        self._framing = framing
        if framing is _Framing.CLOSE:
            self._force_close = True
        head = self._serialize_head(extra)
        self._head_flushed = True
        if final and body and self._body_allowed(framing):
            self.bytes_written += len(body)
        return self._send(head + payload)

    def _write_body(self, data: bytes) -> bool:
        if not self._body_allowed():
            logger.debug("Discarding %d body bytes for a bodiless response", len(data))
            return True
        if self._framing is _Framing.CHUNKED:
            payload = self._chunk(data)
        elif self._framing is _Framing.LENGTH:
            payload = self._clip(data)
        else:
            payload = data
        self.bytes_written += len(data)
        return self._send(payload)

    def _write_terminator(self) -> bool:
        if self._framing is _Framing.CHUNKED:
            return self._send(self._last_chunk())
        if len(self.trailers):
            logger.debug("Dropping trailers: response body is not chunked")
        return True

    def _body_allowed(self, framing: Optional[_Framing] = None) -> bool:
        framing = framing if framing is not None else self._framing
        return framing is not _Framing.NONE and self._method != "HEAD"

    def _clip(self, data: bytes) -> bytes:
        if self.bytes_written + len(data) > (self._declared_length or 0):
            raise ResponseStateError(
                f"Body exceeds declared Content-Length of {self._declared_length}"
            )
        return data

    @staticmethod
    def _chunk(data: bytes) -> bytes:
        return b"%x\r\n%s\r\n" % (len(data), data)

    def _last_chunk(self) -> bytes:
        if self._method == "HEAD":
            return b""
        lines = [f"{name}: {value}\r\n" for name, value in self.trailers.items()]
        return b"0\r\n" + "".join(lines).encode("latin-1") + b"\r\n"

    def _send(self, data: bytes) -> bool:
        if self._connection is None:
            return False
        return self._connection.send(data)


def _to_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231 IMF-fixdate).

        Sun, 18 Oct 2026 12:00:00 GMT

    HTTP dates are always GMT; the weekday and month names are fixed
    English abbreviations, so we don't go through locale-dependent strftime.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def _drop_token(value: str, token: str) -> str:
    """Remove ``token`` (case-insensitive) from a comma-separated header value."""
    kept = [t.strip() for t in value.split(",") if t.strip() and t.strip().lower() != token]
    return ", ".join(kept)
