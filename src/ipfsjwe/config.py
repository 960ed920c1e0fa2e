"""
=============================================================================
GATEWAY CONFIGURATION
=============================================================================

Centralized configuration for the gateway.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── ipfs-jwe serve-scgi --socket-file /run/ipfs-jwe.sock       │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── IPFS_JWE_KEYS_FILE=keys.jsonl ipfs-jwe serve-scgi          │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Validation happens once, at startup. A gateway with a bad configuration
never starts accepting connections.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .ipfs import DEFAULT_API_ADDR


@dataclass
class GatewayConfig:
    """
    Configuration for the gateway.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    KEYS & CONTENT
    - keys_file, ipfs_api, fetch_timeout

    LISTENER
    - socket_file (Unix socket), or host + port (TCP) when socket_file is None
    - backlog, buffer_size, timeout, max_header_size

    THREADING
    - min_workers, max_workers, queue_size

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # KEYS & CONTENT
    # ─────────────────────────────────────────────────────────────────────

    keys_file: str = "keys.jsonarray"
    """JSON-lines file of JWK records, one per line."""

    ipfs_api: str = DEFAULT_API_ADDR
    """Multiaddr (or http URL) of the IPFS Kubo RPC API."""

    fetch_timeout: Optional[float] = 60.0
    """Seconds to wait for IPFS. None = wait forever."""

    # ─────────────────────────────────────────────────────────────────────
    # LISTENER
    # ─────────────────────────────────────────────────────────────────────

    socket_file: Optional[str] = "ipfs-jwe-scgi.socket"
    """
    Unix domain socket path. A stale file at this path is removed at
    startup. Set to None to listen on host:port instead.
    """

    host: str = "127.0.0.1"
    port: int = 4000

    backlog: int = 128
    """Maximum number of queued connections."""

    buffer_size: int = 8192
    """recv() size in bytes."""

    timeout: Optional[float] = 30.0
    """Socket read/write timeout per connection. None = blocking."""

    max_header_size: int = 64 * 1024
    """Largest SCGI header block accepted."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    queue_size: int = 100
    """Connections waiting for a worker. When full, new ones get 42."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    @property
    def listen_address(self) -> str:
        if self.socket_file:
            return self.socket_file
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        IPFS_JWE_KEYS_FILE      Key collection file (default: keys.jsonarray)
        IPFS_JWE_API            IPFS API multiaddr (default: /ip4/127.0.0.1/tcp/5001)
        IPFS_JWE_FETCH_TIMEOUT  IPFS timeout in seconds (default: 60)
        IPFS_JWE_SOCKET_FILE    Unix socket path; empty string = use TCP
        IPFS_JWE_HOST           TCP host (default: 127.0.0.1)
        IPFS_JWE_PORT           TCP port (default: 4000)
        IPFS_JWE_WORKERS        Max worker threads (default: 16)
        IPFS_JWE_TIMEOUT        Socket timeout in seconds (default: 30)
        IPFS_JWE_LOG_LEVEL      Logging level (default: INFO)
        IPFS_JWE_LOG_FORMAT     text or json (default: text)

        =====================================================================
        """
        defaults = cls()
        socket_file = os.getenv("IPFS_JWE_SOCKET_FILE", defaults.socket_file)
        max_workers = int(os.getenv("IPFS_JWE_WORKERS", str(defaults.max_workers)))
        return cls(
            keys_file=os.getenv("IPFS_JWE_KEYS_FILE", defaults.keys_file),
            ipfs_api=os.getenv("IPFS_JWE_API", defaults.ipfs_api),
            fetch_timeout=float(os.getenv("IPFS_JWE_FETCH_TIMEOUT", "60")),
            socket_file=socket_file or None,
            host=os.getenv("IPFS_JWE_HOST", defaults.host),
            port=int(os.getenv("IPFS_JWE_PORT", str(defaults.port))),
            min_workers=min(defaults.min_workers, max_workers),
            max_workers=max_workers,
            timeout=float(os.getenv("IPFS_JWE_TIMEOUT", "30")),
            log_level=os.getenv("IPFS_JWE_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("IPFS_JWE_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid value.
        """
        if not self.socket_file and not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_header_size < 1:
            raise ValueError("max_header_size must be >= 1")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be > 0")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Invalid log_level: {self.log_level}")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', not {self.log_format!r}")
