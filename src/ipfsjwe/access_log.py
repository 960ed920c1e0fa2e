"""
=============================================================================
LOGGING SETUP AND ACCESS LOG
=============================================================================

Two kinds of log output:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Diagnostic logs    every module: logger = logging.getLogger(__name__)│
    │                     configured once by setup_logging()               │
    ├─────────────────────────────────────────────────────────────────────┤
    │  Access log         one line per request on "ipfsjwe.access"         │
    │                     text (default) or JSON                           │
    └─────────────────────────────────────────────────────────────────────┘

Everything goes to stderr. In single-shot (CGI) mode stdout IS the
response, so nothing else may ever be written there.

Text format:

    a1b2c3d4 unix "abc" 20 5 1.23ms

JSON format (for log aggregators):

    {"connection_id": "a1b2c3d4", "peer": "unix", "key_id": "abc",
     "status": 20, "body_length": 5, "duration_ms": 1.23,
     "timestamp": "17/Oct/2026:10:00:00 +0000"}

=============================================================================
"""

import json
import logging
import sys
import time
from dataclasses import dataclass, field


logger = logging.getLogger("ipfsjwe.access")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO"):
    """
    Configure logging for the whole process.

    Args:
        level: Level name, e.g. "DEBUG" or "warning".
    """
    numeric = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
    )
    logging.getLogger("ipfsjwe").setLevel(numeric)

    # urllib3 logs every connection to the IPFS API at DEBUG
    if numeric > logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


@dataclass
class RequestLog:
    """
    Structured log entry for one request.

    connection_id:  Connection identifier, also used in diagnostic logs
    peer:           Peer address ("unix" for Unix sockets, "cgi" in CGI mode)
    key_id:         Requested key ID ("" if none was sent)
    status:         Gemini status code
    body_length:    Response body size in bytes
    duration_ms:    Time from decoded request to written response
    timestamp:      When the request was processed
    """

    connection_id: str
    peer: str
    key_id: str
    status: int
    body_length: int
    duration_ms: float
    timestamp: str = field(default_factory=lambda: time.strftime("%d/%b/%Y:%H:%M:%S %z"))

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "peer": self.peer,
            "key_id": self.key_id,
            "status": self.status,
            "body_length": self.body_length,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f'{self.connection_id} {self.peer} "{self.key_id}" {self.status} '
            f'{self.body_length} {self.duration_ms:.2f}ms'
        )


class AccessLog:
    """
    Emits RequestLog entries.

        access = AccessLog(log_format="json")
        access.record(entry)
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        self.log_format = log_format
        self.log_level = log_level

    def record(self, entry: RequestLog) -> str:
        """Log the entry and return the rendered line."""
        if self.log_format == "json":
            line = json.dumps(entry.to_dict())
        else:
            line = entry.to_text()
        logger.log(self.log_level, line)
        return line
