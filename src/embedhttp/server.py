"""
=============================================================================
HTTP SERVER
=============================================================================

The public entry point. HTTPServer wires the pieces together and is
configured by composition: you pass it a handler, optionally upgrade
handlers and an accept hook. There is nothing to subclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Listener ──accept──► accept_hook(sock, addr)                       │
    │                          │  default: incoming_connection()           │
    │                          │     └── SocketTransport(sock)             │
    │                          ▼                                           │
    │                  handle_connection(transport)                        │
    │                          │                                           │
    │                          └── new thread: Connection.serve()          │
    │                                 │                                    │
    │                                 ├── Dispatcher ──► handler(req, res) │
    │                                 └── UpgradeCoordinator               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The accept hook is where a TLS layer plugs in: wrap the socket, then call
handle_connection() with a transport over the wrapped socket.

=============================================================================
USAGE
=============================================================================

    from embedhttp import HTTPServer

    def hello(request, response):
        response.send_text("Hello, World!\\n")

    server = HTTPServer(hello)
    server.listen("127.0.0.1", 8080)
    ...
    server.close()

Or block until Ctrl+C / SIGTERM:

    HTTPServer(hello).run()

=============================================================================
"""

import logging
import signal
import socket
import threading
from typing import Callable, Iterable, Optional, Set, Tuple

from .config import ServerConfig
from .core.connection import Connection
from .core.dispatcher import Dispatcher, Handler
from .core.listener import Listener
from .core.transport import SocketTransport, Transport
from .core.upgrade import UpgradeCoordinator, UpgradeHandler


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    Embeddable HTTP/1.x server.

    Args:
        handler: ``handler(request, response)``, called once per request.
        config: Server configuration (default: ServerConfig()).
        upgrade_handlers: Handlers offered connections that ask to
            switch protocols, in priority order.
        accept_hook: ``hook(sock, address)`` called for every accepted
            socket. Default: incoming_connection().
    """

    def __init__(
        self,
        handler: Handler,
        config: Optional[ServerConfig] = None,
        upgrade_handlers: Iterable[UpgradeHandler] = (),
        accept_hook: Optional[Callable[[socket.socket, Tuple[str, int]], None]] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self.dispatcher = Dispatcher(handler)
        self.upgrades = UpgradeCoordinator(upgrade_handlers)
        self._listener = Listener(accept_hook or self.incoming_connection, self.config.backlog)

        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()
        self._shutdown_event = threading.Event()

    # =========================================================================
    # LISTENING
    # =========================================================================

    def listen(self, address: Optional[str] = None, port: Optional[int] = None) -> bool:
        """
        Start accepting connections in the background.

        Args:
            address: Interface to bind (default: config.host).
            port: Port to bind; 0 picks a free one (default: config.port).

        Returns:
            True if the server is now listening.
        """
        host = address if address is not None else self.config.host
        port = port if port is not None else self.config.port
        self._shutdown_event.clear()
        return self._listener.listen(host, port)

    def is_listening(self) -> bool:
        return self._listener.is_listening()

    def server_port(self) -> int:
        """Port the server listens on, 0 when it isn't listening."""
        return self._listener.port

    def close(self, close_connections: bool = True) -> None:
        """
        Stop listening.

        Args:
            close_connections: Also tear down connections still open.
        """
        self._listener.close()
        self._listener.wait_closed(timeout=Listener.ACCEPT_TIMEOUT * 2)
        if close_connections:
            with self._connections_lock:
                connections = list(self._connections)
            for connection in connections:
                connection.close()
        self._shutdown_event.set()

    @property
    def active_connections(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    def register_upgrade(self, handler: UpgradeHandler) -> None:
        self.upgrades.register(handler)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def incoming_connection(self, sock: socket.socket, address: Tuple[str, int]) -> None:
        """Default accept hook: wrap the socket and serve it."""
        transport = SocketTransport(sock, address, timeout=self.config.idle_timeout)
        self.handle_connection(transport)

    def handle_connection(self, transport: Transport) -> Connection:
        """
        Serve HTTP on an already connected transport, on a new thread.

        Returns:
            The Connection driving the transport.
        """
        connection = Connection(
            transport,
            self.dispatcher,
            upgrades=self.upgrades,
            config=self.config,
            on_close=self._forget,
        )
        with self._connections_lock:
            self._connections.add(connection)
        thread = threading.Thread(
            target=self._serve, args=(connection,),
            name=f"embedhttp-conn-{connection.id}", daemon=True,
        )
        thread.start()
        return connection

    def _serve(self, connection: Connection) -> None:
        try:
            connection.serve()
        except Exception:
            logger.exception("[%s] Connection crashed", connection.id)
            connection.close()

    def _forget(self, connection: Connection) -> None:
        with self._connections_lock:
            self._connections.discard(connection)

    # =========================================================================
    # BLOCKING RUN
    # =========================================================================

    def serve_forever(self) -> None:
        """Block until close() is called (from a signal handler or another thread)."""
        self._shutdown_event.wait()

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """
        Configure logging, listen, and block until SIGINT/SIGTERM.

        Returns:
            False if the server could not start listening.
        """
        self._setup_logging()
        if not self.listen(host, port):
            return False

        original_handlers = self._setup_signals()
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._restore_signals(original_handlers)
            self.close()
            logger.info("Server stopped")
        return True

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("embedhttp").setLevel(level)

    def _setup_signals(self) -> dict:
        """
        SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) stop the server.

        Signal handlers can only be installed from the main thread; from
        any other thread run() relies on close() being called instead.
        """
        if threading.current_thread() is not threading.main_thread():
            return {}

        def shutdown_handler(signum, frame):
            logger.info("Received %s, shutting down...", signal.Signals(signum).name)
            self._shutdown_event.set()

        return {
            sig: signal.signal(sig, shutdown_handler)
            for sig in (signal.SIGINT, signal.SIGTERM)
        }

    @staticmethod
    def _restore_signals(original_handlers: dict) -> None:
        for sig, handler in original_handlers.items():
            signal.signal(sig, handler)
