"""
=============================================================================
WIRE PROTOCOL
=============================================================================

    Request:   SCGI frame (scgi.py)         → FramedRequest
    Response:  Gemini status line (response.py) + optional body

=============================================================================
"""

from .status_codes import GeminiStatus
from .response import GeminiResponse, success, error, format_outcome
from .scgi import FramedRequest, decode, encode, parse_headers

__all__ = [
    "GeminiStatus",
    "GeminiResponse",
    "success",
    "error",
    "format_outcome",
    "FramedRequest",
    "decode",
    "encode",
    "parse_headers",
]
