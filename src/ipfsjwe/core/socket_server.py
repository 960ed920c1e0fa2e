"""
=============================================================================
LOW-LEVEL SOCKET SERVER
=============================================================================

Listens for front-end connections and hands each accepted socket to a
callback. It knows nothing about SCGI or Gemini.

Two kinds of listener are supported:

    ┌───────────────────────┬─────────────────────────────────────────────┐
    │  Unix domain socket   │  config.socket_file = "ipfs-jwe-scgi.socket" │
    │                       │  Usual deployment: the Gemini server runs   │
    │                       │  on the same host and points its SCGI route │
    │                       │  at the socket file.                        │
    ├───────────────────────┼─────────────────────────────────────────────┤
    │  TCP                  │  config.socket_file = None                  │
    │                       │  config.host / config.port                  │
    └───────────────────────┴─────────────────────────────────────────────┘

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the listening socket
    2. bind()      Unix: a path on disk. TCP: an IP:PORT.
    3. listen()    OS starts queueing incoming connections
    4. accept()    Returns a NEW socket per client; the original keeps listening
    5. close()     Release the socket. Unix: also unlink the socket file.

=============================================================================
STALE SOCKET FILES
=============================================================================

bind() on a Unix socket creates a file. If the previous run crashed, that
file is still there and bind() fails with "Address already in use". The
path is owned by this gateway, so a leftover file is removed before
binding and again at shutdown.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (2):   Ctrl+C
SIGTERM (15): systemd stop, docker stop, kill

Either one flips the running flag. The accept loop notices within one
second (the accept timeout) and exits. Handlers can only be installed from
the main thread; when the server runs in a background thread (tests), the
caller is expected to call shutdown() itself.

=============================================================================
"""

import os
import socket
import signal
import logging
import threading
from typing import Any, Callable, Optional

from ..config import GatewayConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(callback)                                                   │
    │        │                                                             │
    │        ├──► _create_socket()   AF_UNIX or AF_INET, 1s timeout        │
    │        ├──► _bind()            Remove stale file, bind               │
    │        ├──► listen()                                                 │
    │        ├──► _setup_signals()   SIGTERM/SIGINT (main thread only)     │
    │        │                                                             │
    │        └──► _accept_loop()     Blocks here                           │
    │                 └──► Connection(sock) ──► callback(conn)             │
    │                                                                      │
    │    shutdown()        _running = False                                │
    │                                                                      │
    │    _cleanup()        Restore signals, close socket, unlink file      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._ready_event = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_unix(self) -> bool:
        return bool(self.config.socket_file)

    @property
    def address(self) -> Any:
        """
        The bound address: the socket path, or (host, port) for TCP.

        For TCP with port 0 this is the port the OS actually picked, once
        the server is listening.
        """
        if self.is_unix:
            return self.config.socket_file
        if self._socket is not None:
            return self._socket.getsockname()[:2]
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        if self.is_unix:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        else:
            family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            # Avoid "Address already in use" while old sockets sit in TIME_WAIT
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up every second so the running flag gets checked
        sock.settimeout(1.0)
        return sock

    def _remove_socket_file(self):
        path = self.config.socket_file
        try:
            os.unlink(path)
        except FileNotFoundError:
            return
        logger.debug(f"Removed socket file `{path}`")

    def _bind(self):
        if self.is_unix:
            self._remove_socket_file()
            self._socket.bind(self.config.socket_file)
        else:
            self._socket.bind((self.config.host, self.config.port))

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections until shutdown() is called.

        Args:
            connection_handler: Receives each accepted Connection. It must
                                not block the accept loop for long.

        Raises:
            OSError: If the listener cannot be bound.
        """
        self._socket = self._create_socket()

        try:
            self._bind()
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.listen_address}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)

        self._running = True
        self._setup_signals()

        logger.info(f"Listening for SCGI requests on {self.config.listen_address}")
        self._ready_event.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                # Normal: lets us re-check self._running
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {conn.peer}")

            connection_handler(conn)

    def shutdown(self):
        """
        Initiate graceful shutdown.

        Safe to call from a signal handler or another thread, and more
        than once.
        """
        logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        if self.is_unix:
            self._remove_socket_file()

        self._ready_event.clear()
        logger.info("Socket server stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is accepting. True if it is."""
        return self._ready_event.wait(timeout)
