"""
=============================================================================
LISTENER
=============================================================================

Owns the listening socket and the accept loop. For each accepted client
socket it calls ``accept_hook(sock, address)`` and goes straight back to
accept(); what happens to the socket after that is the hook's business.

    ┌───────────────────────┐
    │   Listening Socket    │ ◄── Created by listen()
    └───────────┬───────────┘     Never sends/receives data
                │ accept()
        ┌───────┼───────────────┐
        ▼       ▼               ▼
     client  client   ...    client     each one → accept_hook(sock, address)

There is no connection limit: every accepted socket is handed over.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:
    Restarting the server must not fail with "Address already in use"
    while old connections sit in TIME_WAIT.

TCP_NODELAY (set on accepted sockets):
    Disables Nagle's algorithm. A streamed response is written in many
    small pieces (head, chunk, chunk, last-chunk) and we want each on the
    wire now, not batched.

=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple


logger = logging.getLogger(__name__)

AcceptHook = Callable[[socket.socket, Tuple[str, int]], None]


class Listener:
    """
    TCP accept loop on a background thread.

    Usage:
        listener = Listener(lambda sock, addr: ..., backlog=128)
        if listener.listen("127.0.0.1", 0):
            print(listener.port)
        ...
        listener.close()
    """

    # accept() wakes up this often to notice close()
    ACCEPT_TIMEOUT = 1.0

    def __init__(self, accept_hook: AcceptHook, backlog: int = 128):
        self.accept_hook = accept_hook
        self.backlog = backlog
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._stopped = threading.Event()
        self._stopped.set()

    def _create_socket(self, host: str) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(self.ACCEPT_TIMEOUT)
        return sock

    def listen(self, address: str = "127.0.0.1", port: int = 0) -> bool:
        """
        Bind and start accepting.

        Returns:
            True on success. False if already listening or the address
            can't be bound; the reason is logged.
        """
        if self._running:
            logger.warning("Already listening on port %d", self.port)
            return False

        sock = self._create_socket(address)
        try:
            sock.bind((address, port))
            sock.listen(self.backlog)
        except OSError as e:
            logger.error("Failed to listen on %s:%s: %s", address, port, e)
            sock.close()
            return False

        self._socket = sock
        self._running = True
        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._accept_loop, name=f"embedhttp-accept-{self.port}", daemon=True
        )
        self._thread.start()
        logger.info("Listening on %s:%d", address, self.port)
        return True

    def is_listening(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """Bound port (useful after listening on port 0); 0 when not listening."""
        if self._socket is None:
            return 0
        try:
            return self._socket.getsockname()[1]
        except OSError:
            return 0

    def _accept_loop(self) -> None:
        sock = self._socket
        try:
            while self._running:
                try:
                    client_socket, client_address = sock.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error("Accept error: %s", e)
                    break

                try:
                    client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                except OSError:
                    pass
                logger.debug("Accepted connection from %s:%s", client_address[0], client_address[1])
                try:
                    self.accept_hook(client_socket, client_address)
                except Exception:
                    logger.exception("Accept hook failed for %s:%s", *client_address[:2])
                    client_socket.close()
        finally:
            self._running = False
            try:
                sock.close()
            except OSError:
                pass
            self._stopped.set()

    def close(self) -> None:
        """
        Stop accepting. Connections already handed off are not touched.

        Safe to call more than once.
        """
        if not self._running:
            return
        logger.info("Closing listener on port %d", self.port)
        self._running = False
        sock = self._socket
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
        self._socket = None

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait for the accept loop to exit. False on timeout."""
        return self._stopped.wait(timeout)
