"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable of the server core in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m embedhttp --port 3000                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m embedhttp                        │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Note what is NOT here: there is no request timeout and no connection
limit. A handler may take as long as it likes to finish a response; the
only thing that ends an exchange early is the client going away.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server.

    NETWORK
    - host, port, backlog, buffer_size

    HTTP
    - max_head_size, keep_alive, idle_timeout, poll_interval

    LOGGING / IDENTITY
    - log_level, log_format, server_name
    """

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces
    """

    port: int = 8080
    """Port to listen on. 0 picks a free ephemeral port."""

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 8192
    """How many bytes a connection reads from its transport at once."""

    max_head_size: int = 64 * 1024
    """
    Limit on request line + headers, in bytes.
    A longer head is answered with 431 and the connection is closed.
    """

    keep_alive: bool = True
    """
    Allow persistent connections. False closes every connection after
    its first response, whatever the client asked for.
    """

    idle_timeout: Optional[float] = None
    """
    Seconds a transport read may block before the peer is treated as
    gone. None (default) waits forever.
    """

    poll_interval: float = 0.5
    """
    While a handler is working on a response, how often (seconds) the
    connection checks whether the client has disconnected.
    """

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Access log format: 'text' (human) or 'json' (log aggregators)."""

    server_name: str = "embedhttp/1.0"
    """Value of the Server header added to responses. Empty disables it."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_HOST            Server host (default: 127.0.0.1)
        HTTP_PORT            Server port (default: 8080)
        HTTP_BACKLOG         Listen backlog (default: 128)
        HTTP_MAX_HEAD_SIZE   Head limit in bytes (default: 65536)
        HTTP_KEEP_ALIVE      "0"/"false"/"no" disables keep-alive
        HTTP_IDLE_TIMEOUT    Transport idle timeout in seconds (default: none)
        HTTP_LOG_LEVEL       Logging level (default: INFO)
        HTTP_LOG_FORMAT      text | json (default: text)

        =====================================================================
        """
        idle = os.getenv("HTTP_IDLE_TIMEOUT")
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            backlog=int(os.getenv("HTTP_BACKLOG", "128")),
            max_head_size=int(os.getenv("HTTP_MAX_HEAD_SIZE", str(64 * 1024))),
            keep_alive=os.getenv("HTTP_KEEP_ALIVE", "1").lower() not in ("0", "false", "no"),
            idle_timeout=float(idle) if idle else None,
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        We validate at startup, not at first use, so a typo in an
        environment variable fails immediately.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_head_size < 1024:
            raise ValueError("max_head_size must be >= 1024")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
