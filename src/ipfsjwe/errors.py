"""
=============================================================================
GATEWAY EXCEPTIONS
=============================================================================

Every failure the gateway can report has its own exception type. The
front-end never inspects error text to pick a status code; it looks at
the exception class (or the status code the exception carries).

    GatewayError
    ├── KeyLoadError      key file unreadable / record malformed
    ├── ScgiParseError    malformed request frame
    ├── FetchError        content store unreachable / content missing
    ├── DecryptError      gzip or JWE failure
    └── AddressError      bad IPFS API multiaddr

=============================================================================
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""


class KeyLoadError(GatewayError):
    """Raised when a key file cannot be read or a key record fails to parse."""


class ScgiParseError(GatewayError):
    """
    Raised when an SCGI request frame is malformed.

    Carries the Gemini status code that should be sent back to the client.
    """

    def __init__(self, message: str, status_code: int = 42):
        super().__init__(message)
        self.status_code = status_code


class FetchError(GatewayError):
    """Raised when the content store cannot deliver a blob."""


class DecryptError(GatewayError):
    """Raised when a fetched blob cannot be decompressed or decrypted."""


class AddressError(GatewayError, ValueError):
    """Raised for an IPFS API address we cannot turn into a URL."""
