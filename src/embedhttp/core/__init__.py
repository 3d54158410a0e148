"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The connection-level machinery, from the listening socket to the handler:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  LISTENER          accept() loop on a background thread             │
    │                    every socket → accept hook, no connection limit  │
    └──────────────────────────────┬──────────────────────────────────────┘
                                   │ SocketTransport(sock)
                                   ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONNECTION        one thread per connection                        │
    │                    parse → dispatch → wait for end → keep-alive?    │
    └───────────────┬─────────────────────────────────┬───────────────────┘
                    │ complete head                   │ Upgrade header
                    ▼                                 ▼
    ┌───────────────────────────────┐   ┌─────────────────────────────────┐
    │  DISPATCHER                   │   │  UPGRADE COORDINATOR            │
    │  handler(request, response)   │   │  first accepting handler owns   │
    │  exceptions → 500 / abort     │   │  the transport from now on      │
    └───────────────────────────────┘   └─────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .dispatcher import Dispatcher
from .listener import Listener
from .transport import SocketTransport, Transport
from .upgrade import FunctionUpgradeHandler, UpgradeCoordinator, UpgradeHandler

__all__ = [
    "Connection",
    "ConnectionState",
    "Dispatcher",
    "Listener",
    "Transport",
    "SocketTransport",
    "UpgradeHandler",
    "FunctionUpgradeHandler",
    "UpgradeCoordinator",
]
