"""
=============================================================================
GEMINI RESPONSE FORMATTER
=============================================================================

A Gemini response is a single header line followed, for successes only,
by the raw body:

    ┌─────────────────────────────────────────────────────────────────┐
    │  20 text/plain\r\n          ← <code> SP <meta> CRLF              │
    │  hello                      ← body, success only                 │
    └─────────────────────────────────────────────────────────────────┘

There is no length prefix and no headers. The end of the body is the
end of the connection, which is why the server always closes after
writing.

Mapping from pipeline outcomes:

    Success           → 20 <mime>        + body
    NOT_FOUND         → 51 <detail>
    METADATA_MISSING  → 42 <detail>
    FETCH_FAILED      → 42 <detail>
    DECODE_FAILED     → 42 <detail>

=============================================================================
"""

from dataclasses import dataclass

from ..pipeline import Failure, FailureKind, RetrievalOutcome, Success
from .status_codes import GeminiStatus


_FAILURE_STATUS = {
    FailureKind.NOT_FOUND: GeminiStatus.NOT_FOUND,
    FailureKind.METADATA_MISSING: GeminiStatus.CGI_ERROR,
    FailureKind.FETCH_FAILED: GeminiStatus.CGI_ERROR,
    FailureKind.DECODE_FAILED: GeminiStatus.CGI_ERROR,
}


def single_line(text: str) -> str:
    """Collapse CR/LF so the meta can never break the header line."""
    return " ".join(text.splitlines()).strip()


@dataclass(frozen=True)
class GeminiResponse:
    """
    A response ready to be written to the client.

    Attributes:
        status: Gemini status code.
        meta: MIME type for successes, error text otherwise.
        body: Document bytes (always empty for non-success codes).
    """

    status: GeminiStatus
    meta: str
    body: bytes = b""

    @property
    def header_line(self) -> str:
        return f"{int(self.status)} {single_line(self.meta)}\r\n"

    def to_bytes(self) -> bytes:
        """Serialize for socket.sendall() / stdout.write()."""
        header = self.header_line.encode("utf-8")
        if self.status.is_success:
            return header + self.body
        return header


def success(mime: str, body: bytes) -> GeminiResponse:
    """20 response carrying a document."""
    return GeminiResponse(GeminiStatus.SUCCESS, mime, body)


def error(status: GeminiStatus, message: str) -> GeminiResponse:
    """Error response; never has a body."""
    return GeminiResponse(status, message)


def format_outcome(outcome: RetrievalOutcome) -> GeminiResponse:
    """Convert a pipeline outcome into its wire response."""
    if isinstance(outcome, Success):
        return success(outcome.mime, outcome.body)
    if isinstance(outcome, Failure):
        return error(_FAILURE_STATUS[outcome.kind], outcome.detail)
    raise TypeError(f"Not a retrieval outcome: {outcome!r}")
