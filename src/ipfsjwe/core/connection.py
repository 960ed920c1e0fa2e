"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with a small, stream-like API that the
SCGI decoder can read from and the response formatter can write to.

=============================================================================
STREAMS DO NOT PRESERVE MESSAGE BOUNDARIES
=============================================================================

Whether the front-end talks to us over TCP or a Unix domain socket, we get
a byte stream. One SCGI frame can arrive in any number of pieces:

    Front-end sends:
        14:PATH_INFO\\0abc\\0,

    We might receive:
        recv() → "14:PATH_IN"
        recv() → "FO\\0abc\\0,"

So the decoder never calls recv() directly. It asks for bytes through
read(n), which serves from an internal buffer and only touches the socket
when the buffer is empty.

    ┌─────────────────────────────────────────────────────────────────┐
    │                    read(n)                                       │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   buffer empty? ──yes──► recv(buffer_size) ──► append to buffer │
    │        │                                                         │
    │        no                                                        │
    │        │                                                         │
    │        ▼                                                         │
    │   return up to n bytes from the front of the buffer             │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
ONE REQUEST PER CONNECTION
=============================================================================

A Gemini response has no length prefix. The body ends where the stream
ends, so every connection carries exactly one request and one response
and is then closed:

    NEW ──────► READING ──────► PROCESSING ──────► WRITING
     │             │                                  │
     │             ▼                                  │
     └──────────► CLOSING ◄───────────────────────────┘
                    │
                    ▼
                  CLOSED

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Optional
import uuid


logger = logging.getLogger(__name__)


# Bounds on discarding unread input while closing
DRAIN_TIMEOUT = 0.5
DRAIN_LIMIT = 64 * 1024


class ConnectionState(Enum):
    """Connection lifecycle states, used in logs."""
    NEW = "new"              # Just accepted, nothing read yet
    READING = "reading"      # Reading the SCGI frame
    PROCESSING = "processing"  # Frame decoded, pipeline running
    WRITING = "writing"      # Sending the Gemini response
    CLOSING = "closing"      # Shutdown sequence
    CLOSED = "closed"        # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BUFFERED READING                                                 │
    │     └── read(n) hides recv() chunking from the decoder               │
    │                                                                      │
    │  2. TIMEOUT                                                          │
    │     └── A front-end that connects and goes silent gets dropped       │
    │                                                                      │
    │  3. STATE TRACKING                                                   │
    │     └── Which phase the request is in, for logs                      │
    │                                                                      │
    │  4. CLOSE                                                            │
    │     └── Closing is how the client learns the body is complete        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket.
        address: Peer address. (ip, port) for TCP, usually "" for Unix sockets.
        id: Unique connection identifier (for logging).
        state: Current connection state.
        created_at: Timestamp when connection was accepted.
        bytes_read: Total bytes received from the peer.
        bytes_sent: Total bytes written to the peer.
    """

    socket: socket.socket
    address: Any = ""

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    bytes_read: int = 0
    bytes_sent: int = 0

    # Configuration (passed from GatewayConfig)
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def peer(self) -> str:
        """Printable peer address."""
        if isinstance(self.address, tuple) and len(self.address) >= 2:
            return f"{self.address[0]}:{self.address[1]}"
        return str(self.address) or "unix"

    # =========================================================================
    # READING
    # =========================================================================

    def read(self, n: int) -> bytes:
        """
        Read up to n bytes.

        Returns b"" once the peer has closed its side and the buffer is
        drained. Never returns more than n bytes.

        Raises:
            TimeoutError: If the peer sends nothing within the timeout.
        """
        if n <= 0:
            return b""

        self.state = ConnectionState.READING

        if not self._buffer:
            self._buffer = self._recv()
            if not self._buffer:
                return b""

        data = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return data

    def _recv(self) -> bytes:
        """
        Receive data from socket with error handling.

        Returns:
            Received bytes, or empty bytes if connection closed.
        """
        try:
            data = self.socket.recv(self.buffer_size)
        except socket.timeout:
            raise TimeoutError("Request read timeout")
        except (ConnectionResetError, BrokenPipeError):
            # Client disconnected abruptly
            return b""
        self.bytes_read += len(data)
        return data

    def mark_processing(self):
        self.state = ConnectionState.PROCESSING

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response data to the client.

        Uses sendall() so a large document is never cut short.

        Returns:
            True if send succeeded, False if connection lost.
        """
        self.state = ConnectionState.WRITING

        try:
            self.socket.sendall(data)
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        self.bytes_sent += len(data)
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection.

        shutdown(SHUT_WR) first so the peer sees end-of-stream right after
        the last body byte, drain whatever the peer still sends, then
        release the descriptor.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        self._drain()

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection closed: {self.bytes_read} bytes in, "
            f"{self.bytes_sent} bytes out after "
            f"{(time.time() - self.created_at) * 1000:.1f}ms"
        )

    def _drain(self):
        """
        Discard input the peer is still sending, for at most DRAIN_TIMEOUT
        seconds and DRAIN_LIMIT bytes.

        Unread input would make the kernel send RST instead of FIN, and the
        peer could lose the tail of the response.
        """
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < DRAIN_LIMIT:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(4096)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass  # socket.timeout is an OSError
        if drained:
            logger.debug(f"[{self.id}] Discarded {drained} unread bytes")

    def __enter__(self):
        """
        Allows using Connection with 'with' statement for automatic cleanup:

            with conn:
                headers = scgi.decode(conn)
                conn.send_response(response)
            # Connection closed here
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
