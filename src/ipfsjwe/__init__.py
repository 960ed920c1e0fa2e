"""
=============================================================================
IPFSJWE - Encrypted IPFS documents over SCGI/Gemini
=============================================================================

A gateway that sits behind a Gemini server. The front-end forwards each
request over SCGI with the key ID in PATH_INFO; the gateway looks the key
up, fetches the ciphertext it points at from IPFS, gunzips and decrypts it,
and answers with a Gemini status line and the plaintext.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    ipfsjwe/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (ipfs-jwe / python -m ipfsjwe)
    ├── server.py            # ScgiGateway, CgiGateway
    ├── config.py            # GatewayConfig dataclass
    ├── errors.py            # Exception hierarchy
    ├── keystore.py          # KeyRecord, KeyStore, JSON-lines loader
    ├── pipeline.py          # lookup → fetch → gunzip → decrypt
    ├── ipfs.py              # Kubo RPC client (requests)
    ├── crypto.py            # JWE decryption (python-jose)
    ├── access_log.py        # Logging setup, per-request access log
    ├── core/                # Low-level components
    │   ├── socket_server.py # Unix/TCP listener
    │   ├── connection.py    # Connection wrapper
    │   └── thread_pool.py   # Bounded thread pool
    └── protocol/            # Wire formats
        ├── scgi.py          # SCGI frame decode/encode
        ├── response.py      # Gemini response formatting
        └── status_codes.py  # Gemini status enum

=============================================================================
QUICK START
=============================================================================

    from ipfsjwe import GatewayConfig, ScgiGateway

    config = GatewayConfig(keys_file="keys.jsonarray",
                           socket_file="/run/ipfs-jwe.sock")
    ScgiGateway.from_config(config).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import GatewayConfig
from .keystore import KeyRecord, KeyStore
from .pipeline import Failure, FailureKind, Success, retrieve
from .server import CgiGateway, ScgiGateway

__all__ = [
    "GatewayConfig",
    "KeyRecord",
    "KeyStore",
    "Failure",
    "FailureKind",
    "Success",
    "retrieve",
    "CgiGateway",
    "ScgiGateway",
    "__version__",
]
