"""
Unit tests for the IPFS RPC client.
"""

import json
from typing import List, Optional

import pytest
import requests

from ipfsjwe.errors import AddressError, FetchError
from ipfsjwe.ipfs import DEFAULT_API_ADDR, IpfsClient, multiaddr_to_url


def make_response(status: int, body: bytes, reason: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.reason = reason
    return response


class StubSession:
    """Records posts and answers with canned responses or exceptions."""

    def __init__(self, response: Optional[requests.Response] = None, exc: Optional[Exception] = None):
        self.response = response
        self.exc = exc
        self.posts: List[tuple] = []
        self.closed = False

    def post(self, url, params=None, timeout=None):
        self.posts.append((url, params, timeout))
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        self.closed = True


class TestMultiaddrToUrl:
    """Tests for API address conversion."""

    @pytest.mark.parametrize("addr,url", [
        (DEFAULT_API_ADDR, "http://127.0.0.1:5001"),
        ("/ip4/10.0.0.2/tcp/8080/http", "http://10.0.0.2:8080"),
        ("/ip6/::1/tcp/5001", "http://[::1]:5001"),
        ("/dns/ipfs.example/tcp/443/https", "https://ipfs.example:443"),
        ("/dns4/ipfs.example/tcp/5001", "http://ipfs.example:5001"),
        ("/dns6/ipfs.example/tcp/443/tls/http", "https://ipfs.example:443"),
        ("http://localhost:5001/", "http://localhost:5001"),
        ("https://ipfs.example", "https://ipfs.example"),
    ])
    def test_valid(self, addr: str, url: str):
        """Test every supported address shape."""
        assert multiaddr_to_url(addr) == url

    @pytest.mark.parametrize("addr", [
        "",
        "127.0.0.1:5001",
        "/ip4/127.0.0.1",
        "/ip4/127.0.0.1/udp/5001",
        "/unix/tmp/api.sock",
        "/ip4/127.0.0.1/tcp/notaport",
        "/ip4/127.0.0.1/tcp/0",
        "/ip4/127.0.0.1/tcp/70000",
        "/ip4/127.0.0.1/tcp/5001/ws",
    ])
    def test_invalid(self, addr: str):
        """Test that unusable addresses raise AddressError."""
        with pytest.raises(AddressError):
            multiaddr_to_url(addr)

    def test_address_error_is_value_error(self):
        """Test that callers catching ValueError also catch bad addresses."""
        with pytest.raises(ValueError):
            multiaddr_to_url("nonsense")


class TestIpfsClient:
    """Tests for IpfsClient against a stub session."""

    def test_fetch(self):
        """Test that fetch posts to /api/v0/cat with the CID."""
        session = StubSession(make_response(200, b"ciphertext"))
        client = IpfsClient(DEFAULT_API_ADDR, timeout=7.5, session=session)

        data = client.fetch("bafyabc")

        assert data == b"ciphertext"
        assert session.posts == [
            ("http://127.0.0.1:5001/api/v0/cat", {"arg": "bafyabc"}, 7.5),
        ]

    def test_fetch_api_error(self):
        """Test that Kubo's JSON error message is surfaced."""
        body = json.dumps({"Message": "invalid path \"x\"", "Code": 0, "Type": "error"}).encode()
        client = IpfsClient(session=StubSession(make_response(500, body, "Internal Server Error")))

        with pytest.raises(FetchError, match='returned 500: invalid path "x"'):
            client.fetch("x")

    def test_fetch_non_json_error(self):
        """Test an error body that is not JSON."""
        client = IpfsClient(session=StubSession(make_response(404, b"404 page not found\n", "Not Found")))

        with pytest.raises(FetchError, match="returned 404: 404 page not found"):
            client.fetch("x")

    def test_fetch_empty_error_body(self):
        """Test that the HTTP reason is used when the body is empty."""
        client = IpfsClient(session=StubSession(make_response(502, b"", "Bad Gateway")))

        with pytest.raises(FetchError, match="returned 502: Bad Gateway"):
            client.fetch("x")

    def test_fetch_timeout(self):
        """Test that a timeout becomes a FetchError."""
        client = IpfsClient(session=StubSession(exc=requests.ReadTimeout("slow")))

        with pytest.raises(FetchError, match="timed out"):
            client.fetch("x")

    def test_fetch_connection_error(self):
        """Test that transport errors become FetchError."""
        client = IpfsClient(session=StubSession(exc=requests.ConnectionError("refused")))

        with pytest.raises(FetchError, match="failed"):
            client.fetch("x")

    def test_check_connection(self):
        """Test the version probe."""
        body = json.dumps({"Version": "0.29.0", "Commit": ""}).encode()
        session = StubSession(make_response(200, body))
        client = IpfsClient("/dns/node/tcp/5001", session=session)

        assert client.check_connection() == "0.29.0"
        assert session.posts[0][0] == "http://node:5001/api/v0/version"

    def test_check_connection_odd_payload(self):
        """Test a version answer that is not a JSON object."""
        client = IpfsClient(session=StubSession(make_response(200, b"[]")))
        assert client.check_connection() == "unknown"

    def test_bad_address_rejected_at_construction(self):
        """Test that the address is validated up front."""
        with pytest.raises(AddressError):
            IpfsClient("/ip4/127.0.0.1")

    def test_close(self):
        """Test that close() closes the session."""
        session = StubSession()
        IpfsClient(session=session).close()
        assert session.closed
