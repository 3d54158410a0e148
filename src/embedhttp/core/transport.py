"""
=============================================================================
TRANSPORT
=============================================================================

The byte pipe under a Connection. The state machine never touches a
socket directly; it talks to a Transport:

    ┌──────────────┐   recv / sendall / peer_closed / close   ┌───────────┐
    │  Connection  │ ───────────────────────────────────────► │ Transport │
    └──────────────┘                                          └─────┬─────┘
                                                                    │
                                            SocketTransport ── socket.socket
                                            (or a TLS-wrapped one, or a
                                             socketpair in tests)

Error contract: every flavour of "the peer is gone" (reset, broken pipe,
timeout, EOF) looks the same to the caller. recv() returns b"" and
sendall() returns False. The connection only needs one disconnect path.

=============================================================================
"""

import logging
import select
import socket
from abc import ABC, abstractmethod
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class Transport(ABC):
    """Bidirectional byte stream owned by one connection at a time."""

    @property
    @abstractmethod
    def address(self) -> Tuple[str, int]:
        """Peer (host, port)."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def recv(self, size: int) -> bytes:
        """Read up to ``size`` bytes. b"" means the peer is gone."""

    @abstractmethod
    def sendall(self, data: bytes) -> bool:
        """Write every byte. False means the peer is gone."""

    @abstractmethod
    def peer_closed(self) -> bool:
        """Non-blocking check for EOF / reset from the peer."""

    @abstractmethod
    def close(self) -> None:
        ...


class SocketTransport(Transport):
    """
    Transport over a connected stream socket.

    Args:
        sock: Connected socket (blocking mode is forced).
        address: Peer address as returned by accept().
        timeout: Idle timeout for recv() in seconds; None waits forever.
    """

    def __init__(self, sock: socket.socket, address=None, timeout: Optional[float] = None):
        self.socket = sock
        if address is None:
            try:
                address = sock.getpeername()
            except OSError:
                address = ("", 0)
        # AF_UNIX peers (socketpair) report "" instead of a tuple
        if not isinstance(address, tuple):
            address = (str(address), 0)
        self._address = address[:2]
        self._closed = False

        self.socket.setblocking(True)
        self.socket.settimeout(timeout)

    @property
    def address(self) -> Tuple[str, int]:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    def recv(self, size: int) -> bytes:
        if self._closed:
            return b""
        try:
            return self.socket.recv(size)
        except socket.timeout:
            logger.debug("Idle timeout reading from %s:%s", *self._address)
            return b""
        except (ConnectionResetError, BrokenPipeError):
            # Client disconnected abruptly
            return b""
        except OSError as e:
            if self._closed:
                return b""
            logger.debug("recv failed on %s:%s: %s", *self._address, e)
            return b""

    def sendall(self, data: bytes) -> bool:
        if self._closed:
            return False
        try:
            # sendall() blocks until ALL data is sent or error
            self.socket.sendall(data)
            return True
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.debug("Send to %s:%s failed: %s", *self._address, e)
            return False

    def peer_closed(self) -> bool:
        """
        Peek without consuming: readable with zero bytes means EOF.

        Readable WITH bytes means the client pipelined its next request;
        that's not a disconnect and the bytes stay in the kernel buffer.
        """
        if self._closed:
            return True
        try:
            readable, _, _ = select.select([self.socket], [], [], 0)
            if not readable:
                return False
            return self.socket.recv(1, socket.MSG_PEEK) == b""
        except (ConnectionResetError, BrokenPipeError):
            return True
        except (OSError, ValueError):
            # ValueError: fileno() is -1 after a concurrent close
            return True

    def close(self) -> None:
        """
        Close the connection gracefully.

            Server                              Client
               │   FIN ──────────────────────────► │  (shutdown)
               │ ◄───────────────────────── ACK    │
               │                                   │
            (socket closed)

        SHUT_RDWR rather than SHUT_WR: a thread blocked in recv() on this
        socket returns b"", and one blocked in sendall() fails, instead of
        hanging on a closed descriptor.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected
        try:
            self.socket.close()
        except OSError:
            pass

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<SocketTransport {self._address[0]}:{self._address[1]} {state}>"
