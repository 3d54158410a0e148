"""
=============================================================================
CONNECTION STATE MACHINE
=============================================================================

One Connection per accepted transport. It turns the byte stream into a
sequence of (request, response) exchanges and decides, after each one,
whether the socket is reused, closed, or handed off to another protocol.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:                      Server might receive:
        GET /a HTTP/1.1\\r\\n...           recv() → "GET /a HT"
        GET /b HTTP/1.1\\r\\n...           recv() → "TP/1.1\\r\\n...GET /b HTTP/1.1..."

A recv() can end in the middle of a request line, or carry the tail of
one request and the start of the next (pipelining). So the connection
never looks at raw bytes itself: everything goes through the incremental
RequestParser, which keeps its position across reads and keeps pipelined
bytes buffered until we ask for the next message.

=============================================================================
STATES
=============================================================================

    ┌───────────────────────┐  request line   ┌─────────────────┐
    │ AWAITING_REQUEST_LINE │ ──────────────► │ READING_HEADERS │
    └───────────────────────┘                 └────────┬────────┘
              ▲                                        │ blank line
              │                       ┌────────────────┼──────────────┐
              │                       │ Upgrade        │ body         │ no body
              │                       ▼                ▼              │
              │                 ┌──────────┐    ┌──────────────┐      │
              │                 │ UPGRADED │    │ READING_BODY │      │
              │                 └────┬─────┘    └──────┬───────┘      │
              │                      │ handoff         │ message end  │
              │                      │                 ▼              │
              │                      │          ┌────────────┐ ◄──────┘
              │                      │          │ DISPATCHED │
              │                      │          └──────┬─────┘
              │                      │                 │ response ENDED
              │                      │                 ▼
              │   keep-alive         │      ┌───────────────────┐
              └──────────────────────┼───── │ RESPONSE_COMPLETE │
                                     │      └─────────┬─────────┘
                                     ▼                │ pending_close
                                ┌────────┐            │
                                │ CLOSED │ ◄──────────┘
                                └────────┘
                                     ▲
                 disconnect / parse error from ANY state

The handler is dispatched as soon as the headers are complete. While it
runs, the state is READING_BODY until it has pulled the whole body
through request.body, then DISPATCHED.

=============================================================================
THREADS
=============================================================================

serve() runs on the connection's own thread. The handler is called on
that thread too, but it may return before finishing the response and
end() it later from anywhere:

    connection thread                 handler's worker thread
    ─────────────────                 ───────────────────────
    dispatch(request, response) ──►   (queued)
    wait(poll_interval) ◄─┐           response.write(...)
    peer_closed()? ───────┘           response.end()  ──► response_ended()
    _finish_exchange() ◄───────────────────────────────────────┘

Writes go through send(), which serializes them on a write lock. close()
never waits on that lock: shutting the transport down wakes a send()
blocked on a client that stopped reading.

=============================================================================
"""

import logging
import threading
import time
import uuid
from enum import Enum
from typing import Callable, Optional

from ..access_log import log_exchange, record_exchange
from ..config import ServerConfig
from ..errors import MalformedKind, MalformedRequest, PrematureDisconnect, UnsupportedUpgrade
from ..http.parser import (
    NEED_DATA,
    BodyChunk,
    HeaderField,
    HeadersEnd,
    MessageEnd,
    ParseError,
    RequestLine,
    RequestParser,
)
from ..http.request import Request
from ..http.response import Response, ResponseState
from ..http.status_codes import reason_phrase
from .dispatcher import Dispatcher
from .transport import Transport
from .upgrade import UpgradeCoordinator


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    AWAITING_REQUEST_LINE = "awaiting_request_line"
    READING_HEADERS = "reading_headers"
    READING_BODY = "reading_body"
    DISPATCHED = "dispatched"
    RESPONSE_COMPLETE = "response_complete"
    UPGRADED = "upgraded"
    CLOSED = "closed"


class Connection:
    """
    Drives the HTTP exchanges on one transport.

    Attributes:
        transport: The byte pipe; None after an upgrade handoff.
        request / response: The pair lent to the handler, reused per exchange.
        parser: Incremental request parser (keeps pipelined bytes).
        state: Current ConnectionState.
        pending_close: Close once the current response has ended.
        upgrade_pending: The current head asked for a protocol switch.
        id: Short id used as the log prefix.
        requests_handled: Completed exchanges so far.
    """

    def __init__(
        self,
        transport: Transport,
        dispatcher: Dispatcher,
        upgrades: Optional[UpgradeCoordinator] = None,
        config: Optional[ServerConfig] = None,
        on_close: Optional[Callable[["Connection"], None]] = None,
    ):
        self.config = config or ServerConfig()
        self.transport: Optional[Transport] = transport
        self.dispatcher = dispatcher
        self.upgrades = upgrades if upgrades is not None else UpgradeCoordinator()
        self.on_close = on_close

        self.id = uuid.uuid4().hex[:8]
        self.state = ConnectionState.AWAITING_REQUEST_LINE
        self.created_at = time.time()
        self.requests_handled = 0
        self.pending_close = False
        self.upgrade_pending = False

        self.parser = RequestParser(max_head_size=self.config.max_head_size)
        self.request = Request(self)
        self.response = Response(self, server_name=self.config.server_name)

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._response_done = threading.Event()
        self._exchange_started = 0.0

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.state.value} requests={self.requests_handled}>"

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def serve(self) -> None:
        """Run exchanges until the connection closes or is handed off."""
        peer = self.transport.address if self.transport is not None else ("", 0)
        logger.debug("[%s] Connection from %s:%s", self.id, peer[0], peer[1])
        try:
            while not self.closed:
                if not self._read_head():
                    break
                if self.upgrade_pending:
                    self._upgrade()
                    break
                self._dispatch()
                if not self._await_response():
                    break
                self._finish_exchange()
        finally:
            self.close()

    def _receive(self) -> None:
        """Feed the parser one read's worth of bytes (or EOF)."""
        data = self.transport.recv(self.config.buffer_size) if self.transport else b""
        if data:
            self.parser.receive_data(data)
        else:
            self.parser.receive_eof()

    def _read_head(self) -> bool:
        """
        Parse up to the end of the next request head.

        Returns:
            True when a head is complete, False if the connection closed.
        """
        request = self.request
        while True:
            event = self.parser.next_event()

            if event is NEED_DATA:
                self._receive()
                continue

            if event is None:
                if self.parser.idle:
                    logger.debug("[%s] Client closed the connection", self.id)
                else:
                    logger.info("[%s] Client disconnected mid-request", self.id)
                self.close()
                return False

            if isinstance(event, ParseError):
                self._reject(event.error)
                return False

            if isinstance(event, RequestLine):
                request.method = event.method
                request.url = event.target
                request.version = event.version
                self.state = ConnectionState.READING_HEADERS
                self._exchange_started = time.time()

            elif isinstance(event, HeaderField):
                try:
                    request.headers.add(event.name, event.value)
                except ValueError as e:
                    self._reject(MalformedRequest(MalformedKind.HEADER, str(e)))
                    return False

            elif isinstance(event, HeadersEnd):
                self._headers_complete(event)
                return True

    def _headers_complete(self, event: HeadersEnd) -> None:
        request = self.request
        self.pending_close = not (self.config.keep_alive and request.keep_alive)
        self.upgrade_pending = event.upgrade

        if event.upgrade:
            self.state = ConnectionState.UPGRADED
            return

        # Even a bodiless message has a MessageEnd to consume, so the body
        # always pulls through the parser.
        request.body.reset(self._read_body_chunk)
        if event.has_body:
            self.state = ConnectionState.READING_BODY
        else:
            self.state = ConnectionState.DISPATCHED

    def _dispatch(self) -> None:
        request = self.request
        self.response.prepare(request.version, request.method, not self.pending_close)
        self._response_done.clear()
        logger.debug("[%s] %s %s %s", self.id, request.method, request.url, request.http_version)
        self.dispatcher.dispatch(request, self.response)

    def _await_response(self) -> bool:
        """
        Block until the response ends, watching for the client leaving.

        Returns:
            False if the connection was torn down while waiting.
        """
        interval = self.config.poll_interval
        while not self._response_done.wait(interval):
            if self.closed:
                return False
            transport = self.transport
            if transport is None or transport.peer_closed():
                logger.info(
                    "[%s] Client disconnected before the response to %s %s ended",
                    self.id, self.request.method, self.request.url,
                )
                self.close()
                return False
        return not self.closed

    def _finish_exchange(self) -> None:
        body_pending = self.state is ConnectionState.READING_BODY
        self.state = ConnectionState.RESPONSE_COMPLETE
        self.requests_handled += 1

        request = self.request
        response = self.response
        if not response.keep_alive:
            self.pending_close = True
        if body_pending and request.expects_continue and not response.continue_sent:
            # The client is still waiting for permission to send the body
            # it announced; we can't tell where the next request starts.
            self.pending_close = True

        log_exchange(record_exchange(self, self._exchange_started), self.config.log_format)

        if self.pending_close:
            logger.debug("[%s] Closing after %d requests", self.id, self.requests_handled)
            self.close()
            return

        try:
            for _ in request.body:
                pass
        except (PrematureDisconnect, MalformedRequest):
            # The connection is already closed (or answered and closed).
            return

        self.parser.start_next_message()
        request.reset()
        response.reset()
        self._response_done.clear()
        self.upgrade_pending = False
        self.state = ConnectionState.AWAITING_REQUEST_LINE

    # =========================================================================
    # BODY
    # =========================================================================

    def _read_body_chunk(self) -> bytes:
        """
        Source for request.body: the next decoded chunk, b"" at message end.

        Raises:
            PrematureDisconnect: The client went away mid-body.
            MalformedRequest: The body framing is broken. The connection
                has already answered and closed.
        """
        if self.state is ConnectionState.READING_BODY and self.request.expects_continue:
            self.response.write_continue()

        while True:
            event = self.parser.next_event()

            if event is NEED_DATA:
                self._receive()
                continue

            if event is None:
                logger.info("[%s] Client disconnected mid-body", self.id)
                self.close()
                raise PrematureDisconnect("Client disconnected while sending the body")

            if isinstance(event, ParseError):
                self._reject(event.error)
                raise event.error

            if isinstance(event, BodyChunk):
                if event.data:
                    return event.data

            elif isinstance(event, HeaderField):
                # trailer field after a chunked body
                try:
                    self.request.trailers.add(event.name, event.value)
                except ValueError as e:
                    error = MalformedRequest(MalformedKind.HEADER, str(e))
                    self._reject(error)
                    raise error

            elif isinstance(event, MessageEnd):
                if self.state is ConnectionState.READING_BODY:
                    self.state = ConnectionState.DISPATCHED
                return b""

    # =========================================================================
    # UPGRADE
    # =========================================================================

    def _upgrade(self) -> None:
        request = self.request
        head = self.parser.trailing()
        request.head = head
        request._active = True

        released = []

        def release() -> Optional[Transport]:
            transport = self._release_transport()
            if transport is not None:
                released.append(transport)
            return transport

        try:
            accepted = self.upgrades.try_upgrade(request, head, release=release)
        except Exception:
            logger.exception("[%s] Upgrade handler failed", self.id)
            for transport in released:
                transport.close()
            accepted = False

        if not accepted:
            logger.info("[%s] %s; closing", self.id, UnsupportedUpgrade(request.upgrade or ""))
            self.close()

    def _release_transport(self) -> Optional[Transport]:
        """Let go of the transport without closing it, then close the connection."""
        with self._lock:
            if self.closed or self.transport is None:
                return None
            transport = self.transport
            self.transport = None
        logger.info("[%s] Upgraded to %r", self.id, self.request.upgrade)
        self.close()
        return transport

    # =========================================================================
    # ERRORS
    # =========================================================================

    def _reject(self, error: MalformedRequest) -> None:
        """Answer a malformed request (if nothing was written yet) and close."""
        logger.warning("[%s] Malformed request (%s): %s", self.id, error.kind.label, error)
        self.pending_close = True
        response = self.response
        if response.state is ResponseState.UNSENT and not self.closed:
            request = self.request
            response.prepare(request.version, request.method or "GET", keep_alive=False)
            response.headers.clear()
            response.close_connection()
            status = error.status_code
            response.send_text(f"{status} {reason_phrase(status)}\n", status)
        self.close()

    # =========================================================================
    # COLLABORATOR API (used by Response)
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """Write raw bytes to the transport. False once the connection is gone."""
        with self._lock:
            transport = None if self.closed else self.transport
        if transport is None:
            return False
        with self._write_lock:
            ok = transport.sendall(data)
        if not ok and not self.closed:
            logger.info("[%s] Send failed; client is gone", self.id)
            self.close()
        return ok

    def response_ended(self, response: Response) -> None:
        self.request._active = False
        self._response_done.set()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Tear the connection down. Safe to call from any thread, any number
        of times. After an upgrade handoff the transport is NOT closed.
        """
        with self._lock:
            if self.closed:
                return
            self.state = ConnectionState.CLOSED
            transport = self.transport
            self.transport = None

        if transport is not None:
            transport.close()
        self.request._active = False
        self._response_done.set()
        logger.debug("[%s] Connection closed after %d requests", self.id, self.requests_handled)
        if self.on_close is not None:
            self.on_close(self)
