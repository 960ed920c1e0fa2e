"""
=============================================================================
IPFS CONTENT FETCHER
=============================================================================

Encrypted documents live in IPFS and are fetched through the Kubo HTTP RPC
API. Every RPC call is an HTTP POST:

    POST http://127.0.0.1:5001/api/v0/cat?arg=<cid>     → raw file bytes
    POST http://127.0.0.1:5001/api/v0/version           → {"Version": ...}

The API address is configured as a multiaddr, the same notation the IPFS
tooling uses:

    /ip4/127.0.0.1/tcp/5001          → http://127.0.0.1:5001
    /dns4/ipfs.local/tcp/5001/https  → https://ipfs.local:5001
    /ip6/::1/tcp/5001                → http://[::1]:5001

=============================================================================
"""

import logging
from typing import Optional

import requests

from .errors import AddressError, FetchError


logger = logging.getLogger(__name__)


DEFAULT_API_ADDR = "/ip4/127.0.0.1/tcp/5001"

_HOST_PROTOCOLS = ("ip4", "ip6", "dns", "dns4", "dns6")


def multiaddr_to_url(addr: str) -> str:
    """
    Convert an IPFS API multiaddr into an HTTP base URL.

    Plain http:// and https:// URLs are passed through unchanged.

    Raises:
        AddressError: For anything that is not host + tcp port.
    """
    if addr.startswith(("http://", "https://")):
        return addr.rstrip("/")

    if not addr.startswith("/"):
        raise AddressError(f"Invalid multiaddr `{addr}`: must start with `/`.")

    parts = addr.strip("/").split("/")
    if len(parts) < 4:
        raise AddressError(f"Invalid multiaddr `{addr}`: expected /<proto>/<host>/tcp/<port>.")

    proto, host, transport, port = parts[:4]
    if proto not in _HOST_PROTOCOLS:
        raise AddressError(f"Unsupported multiaddr protocol `{proto}` in `{addr}`.")
    if transport != "tcp":
        raise AddressError(f"Unsupported multiaddr transport `{transport}` in `{addr}`.")
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise AddressError(f"Invalid port `{port}` in `{addr}`.")

    scheme = "http"
    rest = parts[4:]
    if rest == ["https"] or rest == ["tls", "http"]:
        scheme = "https"
    elif rest not in ([], ["http"]):
        raise AddressError(f"Unsupported multiaddr suffix `/{'/'.join(rest)}` in `{addr}`.")

    if proto == "ip6":
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}"


class IpfsClient:
    """
    Minimal Kubo RPC client.

    Holds one requests.Session for the life of the process. The session
    is created at startup and only read afterwards, so worker threads
    share it.

    Usage:
        client = IpfsClient("/ip4/127.0.0.1/tcp/5001")
        client.check_connection()
        blob = client.fetch("bafy...")
    """

    def __init__(
        self,
        api_addr: str = DEFAULT_API_ADDR,
        timeout: Optional[float] = 60.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            api_addr: Multiaddr (or http URL) of the Kubo RPC API.
            timeout: Seconds to wait for each RPC call. None waits forever.
            session: Pre-built session (tests inject a stub here).

        Raises:
            AddressError: If api_addr cannot be parsed.
        """
        self.api_addr = api_addr
        self.base_url = multiaddr_to_url(api_addr)
        self.timeout = timeout
        self._session = session or requests.Session()

    def _post(self, command: str, **params: str) -> requests.Response:
        url = f"{self.base_url}/api/v0/{command}"
        try:
            response = self._session.post(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise FetchError(f"IPFS request `{command}` timed out: {e}") from e
        except requests.RequestException as e:
            raise FetchError(f"IPFS request `{command}` failed: {e}") from e

        if response.status_code != 200:
            raise FetchError(self._error_message(command, response))
        return response

    @staticmethod
    def _error_message(command: str, response: requests.Response) -> str:
        """Kubo reports errors as {"Message": ..., "Code": ..., "Type": "error"}."""
        try:
            payload = response.json()
        except ValueError:
            payload = None
        message = payload.get("Message") if isinstance(payload, dict) else None
        if not message:
            message = response.text.strip() or response.reason
        return f"IPFS `{command}` returned {response.status_code}: {message}"

    def fetch(self, content_id: str) -> bytes:
        """
        Fetch the raw bytes of a UnixFS file by CID.

        Raises:
            FetchError: On transport errors, timeouts, or an API error
                        (unknown CID, not a file, ...).
        """
        logger.debug(f"Fetching `{content_id}` from {self.base_url}")
        response = self._post("cat", arg=content_id)
        data = response.content
        logger.debug(f"Fetched {len(data)} bytes for `{content_id}`")
        return data

    def check_connection(self) -> str:
        """
        Verify the API is reachable.

        Returns:
            The daemon version string.

        Raises:
            FetchError: If the API cannot be reached.
        """
        response = self._post("version")
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            return str(payload.get("Version", "unknown"))
        return "unknown"

    def close(self) -> None:
        self._session.close()
