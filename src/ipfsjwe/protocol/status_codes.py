"""
=============================================================================
GEMINI STATUS CODES
=============================================================================

Gemini responses start with a two-digit status code. The first digit is
the category, the second refines it:

    ┌────────┬──────────────────────────────────────────────────────────┐
    │  2x    │ SUCCESS: meta is the MIME type, a body follows           │
    │        │ 20 Success                                               │
    ├────────┼──────────────────────────────────────────────────────────┤
    │  4x    │ TEMPORARY FAILURE: meta is an error message              │
    │        │ 40 Temporary failure                                     │
    │        │ 42 CGI error          (every pipeline error ends here)   │
    ├────────┼──────────────────────────────────────────────────────────┤
    │  5x    │ PERMANENT FAILURE: meta is an error message              │
    │        │ 51 Not found          (unknown key ID)                   │
    │        │ 59 Bad request        (no key ID in the request)         │
    └────────┴──────────────────────────────────────────────────────────┘

Only the codes the gateway actually sends are defined.

=============================================================================
"""

from enum import IntEnum


class GeminiStatus(IntEnum):
    """
    Gemini status codes used by the gateway.

        >>> GeminiStatus.SUCCESS == 20
        True
        >>> GeminiStatus.NOT_FOUND.phrase
        'Not Found'
    """

    SUCCESS = 20
    CGI_ERROR = 42
    NOT_FOUND = 51
    BAD_REQUEST = 59

    @property
    def phrase(self) -> str:
        return _PHRASES[self]

    @property
    def is_success(self) -> bool:
        return 20 <= self < 30

    def __str__(self) -> str:
        return str(self.value)


_PHRASES = {
    GeminiStatus.SUCCESS: "Success",
    GeminiStatus.CGI_ERROR: "CGI Error",
    GeminiStatus.NOT_FOUND: "Not Found",
    GeminiStatus.BAD_REQUEST: "Bad Request",
}
