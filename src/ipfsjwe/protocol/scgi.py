"""
=============================================================================
SCGI FRAME CODEC
=============================================================================

The front-end speaks SCGI: the Gemini server in front of us forwards each
request as a netstring of null-terminated header pairs.

    ┌─────────────────────────────────────────────────────────────────┐
    │  14:PATH_INFO\\0abc\\0,                                          │
    │  ││ └──────┬───────┘│                                           │
    │  ││        │        └── terminator (one byte, normally ",")     │
    │  ││        └─────────── header block, exactly 14 bytes          │
    │  │└──────────────────── ":" ends the length                     │
    │  └───────────────────── decimal ASCII length                    │
    └─────────────────────────────────────────────────────────────────┘

The header block is a sequence of null-terminated strings read in pairs:

    name \\0 value \\0 name \\0 value \\0 ...

An odd trailing name with no value is ignored. Duplicate names: the last
value wins. The only header the gateway consumes is PATH_INFO (the key ID),
but all of them are kept.

=============================================================================
STREAM CONTRACT
=============================================================================

decode() reads from any object with a read(n) method that:
  - returns between 1 and n bytes while data is available
  - returns b"" at end of stream

TCP delivers bytes in arbitrary chunks, so every read here loops until it
has what it needs. The result is the same whether the frame arrives in one
recv() or one byte at a time.

=============================================================================
"""

import logging
from typing import Mapping, Protocol

from ..errors import ScgiParseError


logger = logging.getLogger(__name__)


# Longest length prefix we accept (up to 9,999,999,999 bytes)
MAX_LENGTH_DIGITS = 10

DEFAULT_MAX_HEADER_SIZE = 64 * 1024

TERMINATOR = b","


class Readable(Protocol):
    def read(self, n: int) -> bytes: ...


class FramedRequest(dict):
    """
    Decoded SCGI headers, in arrival order.

    A plain dict with a couple of accessors for the headers the gateway
    cares about.
    """

    @property
    def path_info(self) -> str:
        """The requested key ID, or "" when absent."""
        return self.get("PATH_INFO", "")

    @property
    def has_path_info(self) -> bool:
        return bool(self.get("PATH_INFO"))


def _read_exact(stream: Readable, size: int) -> bytes:
    """Read exactly size bytes or fail."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            received = size - remaining
            raise ScgiParseError(
                f"Incomplete request: expected {size} header bytes, got {received}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_length(stream: Readable) -> int:
    """Read the decimal length prefix up to and including the ':'."""
    digits = b""
    while True:
        byte = stream.read(1)
        if not byte:
            raise ScgiParseError("Incomplete request: no length terminator `:`")
        if byte == b":":
            break
        if not byte.isdigit():
            raise ScgiParseError(f"Invalid request length: unexpected byte {byte!r}")
        digits += byte
        if len(digits) > MAX_LENGTH_DIGITS:
            raise ScgiParseError("Invalid request length: too many digits")

    if not digits:
        raise ScgiParseError("Invalid request length: empty")
    return int(digits)


def parse_headers(block: bytes) -> FramedRequest:
    """
    Split a header block into name/value pairs.

        b"A\\0x\\0B\\0y\\0"   → {"A": "x", "B": "y"}
        b"A\\0x\\0B\\0"       → {"A": "x"}          (dangling B ignored)
        b"A\\0x\\0B"          → {"A": "x"}          (unterminated B ignored)
    """
    parts = block.split(b"\0")
    # A terminated block leaves one empty element after the last null
    if parts and parts[-1] == b"":
        parts.pop()

    headers = FramedRequest()
    for i in range(0, len(parts) - 1, 2):
        name = parts[i].decode("utf-8", errors="replace")
        value = parts[i + 1].decode("utf-8", errors="replace")
        headers[name] = value
    return headers


def decode(stream: Readable, max_header_size: int = DEFAULT_MAX_HEADER_SIZE) -> FramedRequest:
    """
    Read one SCGI request frame from a stream.

    Args:
        stream: Byte source (see STREAM CONTRACT above).
        max_header_size: Largest header block we are willing to buffer.

    Returns:
        The decoded headers.

    Raises:
        ScgiParseError: Bad length prefix, short header block, or missing
                        terminator byte.
    """
    length = _read_length(stream)
    if length > max_header_size:
        raise ScgiParseError(
            f"Request too large: {length} header bytes (limit {max_header_size})"
        )

    block = _read_exact(stream, length)

    terminator = stream.read(1)
    if not terminator:
        raise ScgiParseError("Incomplete request: missing terminator")
    if terminator != TERMINATOR:
        logger.debug(f"Unexpected SCGI terminator {terminator!r}")

    return parse_headers(block)


def encode(headers: Mapping[str, str]) -> bytes:
    """
    Build an SCGI frame from headers.

    Used by clients and tests; the gateway itself only decodes.

        encode({"PATH_INFO": "abc"}) == b"14:PATH_INFO\\0abc\\0,"
    """
    block = b"".join(
        name.encode("utf-8") + b"\0" + value.encode("utf-8") + b"\0"
        for name, value in headers.items()
    )
    return str(len(block)).encode("ascii") + b":" + block + TERMINATOR
