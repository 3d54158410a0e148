"""
=============================================================================
PROTOCOL UPGRADE
=============================================================================

When a request carries an ``Upgrade`` header (WebSocket being the usual
case), the client stops speaking HTTP right after the blank line:

    GET /chat HTTP/1.1\\r\\n
    Upgrade: websocket\\r\\n
    Connection: Upgrade\\r\\n
    \\r\\n
    <new-protocol bytes...>      ← may already be in our read buffer!

The connection pauses its parser and asks the coordinator who wants the
socket. The first registered handler whose protocol matches and whose
accepts() agrees becomes the new owner of the transport, along with the
bytes already read past the head:

    ┌────────────┐  try_upgrade(request, head,  ┌──────────────────────┐
    │ Connection │ ────────── release) ───────► │  UpgradeCoordinator  │
    └────────────┘                              └──────────┬───────────┘
          ▲                                                │ first match
          │  release(): connection drops the transport     │
          └──────── (NOT closed) and stops tracking ◄──────┤
                                                           ▼
          no match → False, the connection         handler.upgrade(request, head)
          closes the transport

The handler writes its own handshake response (e.g. "101 Switching
Protocols") straight to request.transport.

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Sequence

from ..http.request import Request
from .transport import Transport


logger = logging.getLogger(__name__)


class UpgradeHandler(ABC):
    """
    Takes over a connection whose client asked to switch protocols.

    Subclasses list the protocol tokens they speak in ``protocols``. An
    empty tuple matches any Upgrade value.
    """

    protocols: Sequence[str] = ()

    def matches(self, request: Request) -> bool:
        if not self.protocols:
            return True
        offered = [
            token.strip().lower()
            for token in (request.upgrade or "").split(",")
            if token.strip()
        ]
        wanted = {p.lower() for p in self.protocols}
        # "websocket/13" offers protocol "websocket" version 13
        return any(token.split("/", 1)[0] in wanted or token in wanted for token in offered)

    def accepts(self, request: Request) -> bool:
        """Check protocol-specific preconditions (headers, path, ...)."""
        return True

    @abstractmethod
    def upgrade(self, request: Request, head: bytes) -> None:
        """
        Take ownership of ``request.transport``.

        Called on the connection's thread after the connection has let go
        of the transport: the server no longer tracks it and won't close
        it. Either serve the new protocol here, or hand the transport to
        another thread and return. Grab it during this call; afterwards
        ``request.transport`` is None.

        Args:
            request: The upgrade request. Only valid during this call.
            head: Bytes received after the blank line, already consumed
                  from the transport.
        """


class FunctionUpgradeHandler(UpgradeHandler):
    """
    Wrap a plain function as an upgrade handler.

        def echo(request, head):
            transport = request.transport
            transport.sendall(b"HTTP/1.1 101 Switching Protocols\\r\\n...")

        server.register_upgrade(FunctionUpgradeHandler(echo, protocols=("echo",)))
    """

    def __init__(
        self,
        func: Callable[[Request, bytes], None],
        protocols: Sequence[str] = (),
        accepts: Optional[Callable[[Request], bool]] = None,
    ):
        self.func = func
        self.protocols = tuple(protocols)
        self._accepts = accepts

    def accepts(self, request: Request) -> bool:
        if self._accepts is None:
            return True
        return bool(self._accepts(request))

    def upgrade(self, request: Request, head: bytes) -> None:
        self.func(request, head)

    def __repr__(self) -> str:
        name = getattr(self.func, "__name__", repr(self.func))
        return f"<FunctionUpgradeHandler {name} protocols={self.protocols}>"


class UpgradeCoordinator:
    """Ordered registry of upgrade handlers."""

    def __init__(self, handlers: Iterable[UpgradeHandler] = ()):
        self._handlers: List[UpgradeHandler] = []
        for handler in handlers:
            self.register(handler)

    def register(self, handler: UpgradeHandler) -> None:
        if not isinstance(handler, UpgradeHandler):
            raise TypeError(f"Expected an UpgradeHandler, got {type(handler).__name__}")
        self._handlers.append(handler)

    @property
    def handlers(self) -> List[UpgradeHandler]:
        return list(self._handlers)

    def find(self, request: Request) -> Optional[UpgradeHandler]:
        """First handler that both matches and accepts, or None."""
        for handler in self._handlers:
            if handler.matches(request) and handler.accepts(request):
                return handler
        return None

    def try_upgrade(
        self,
        request: Request,
        head: bytes,
        release: Optional[Callable[[], Optional[Transport]]] = None,
    ) -> bool:
        """
        Hand the connection to the first willing handler.

        Args:
            request: The request asking to switch protocols.
            head: Bytes received after the blank line.
            release: Called once a handler is chosen and before it runs.
                It takes the transport away from its connection and returns
                it, or None if the connection is already gone. The handler
                reaches it through ``request.transport`` during the call.

        Returns:
            True if a handler took ownership of the transport.
        """
        handler = self.find(request)
        if handler is None:
            logger.info("No upgrade handler for %r", request.upgrade)
            return False

        if release is not None:
            transport = release()
            if transport is None:
                logger.info("Connection closed before the upgrade to %r", request.upgrade)
                return False
            request._handoff = transport

        logger.debug("Upgrading to %r via %r", request.upgrade, handler)
        try:
            handler.upgrade(request, head)
        finally:
            request._handoff = None
        return True

    def __len__(self) -> int:
        return len(self._handlers)
