"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the SCGI gateway:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Unix socket (or TCP) listener, accept() loop on the main thread  │
    │  • Removes stale socket files, handles SIGTERM/SIGINT               │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          THREAD POOL                                 │
    │  • Bounded queue, workers pull connections from it                  │
    │  • Full queue = connection rejected immediately                     │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Worker processes connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Buffered read(n) for the SCGI decoder                            │
    │  • One request, one response, then close                            │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
