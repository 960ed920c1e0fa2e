"""
pytest configuration and fixtures.
"""

import gzip
import socket
import threading
from typing import Callable, Dict, Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ipfsjwe import GatewayConfig, KeyRecord, KeyStore, ScgiGateway
from ipfsjwe.errors import DecryptError, FetchError


@pytest.fixture
def sample_frame() -> bytes:
    """SCGI frame asking for key `abc`."""
    return b"14:PATH_INFO\x00abc\x00,"


@pytest.fixture
def sample_jwk() -> dict:
    """A symmetric JWK carrying gateway metadata."""
    return {
        "kty": "oct",
        "kid": "abc",
        "alg": "dir",
        "k": "AAECAwQFBgcICQoLDA0ODxAREhMUFRYXGBkaGxwdHh8",
        "mime": "text/plain",
        "ipfs": {"cid": "bafyabc"},
    }


def make_record(kid: str, **members) -> KeyRecord:
    jwk = {"kty": "oct", "kid": kid, "k": "c2VjcmV0"}
    jwk.update(members)
    return KeyRecord.from_jwk(jwk)


@pytest.fixture
def store() -> KeyStore:
    """
    In-memory key store:

        abc      complete record
        gz       complete record, blob is gzip-compressed
        nomime   no `mime`
        noipfs   no `ipfs` object
        nocid    `ipfs` object without `cid`
    """
    return KeyStore([
        make_record("abc", mime="text/plain", ipfs={"cid": "bafyabc"}),
        make_record("gz", mime="text/gemini", ipfs={"cid": "bafygz"}),
        make_record("nomime", ipfs={"cid": "bafynomime"}),
        make_record("noipfs", mime="text/plain"),
        make_record("nocid", mime="text/plain", ipfs={}),
    ])


class FakeFetcher:
    """Serves blobs from a dict and records every CID asked for."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None, error: Optional[str] = None):
        self.blobs = blobs or {}
        self.error = error
        self.calls: List[str] = []

    def fetch(self, content_id: str) -> bytes:
        self.calls.append(content_id)
        if self.error is not None:
            raise FetchError(self.error)
        if content_id not in self.blobs:
            raise FetchError(f"IPFS `cat` returned 500: no link named {content_id!r}")
        return self.blobs[content_id]


class FakeDecryptor:
    """Decryptor stand-in: returns the ciphertext unchanged."""

    def __init__(self, error: Optional[str] = None):
        self.error = error
        self.calls: List[tuple] = []

    def decrypt(self, record: KeyRecord, ciphertext: bytes) -> bytes:
        self.calls.append((record.id, ciphertext))
        if self.error is not None:
            raise DecryptError(self.error)
        return ciphertext


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher({
        "bafyabc": b"hello",
        "bafygz": gzip.compress(b"# compressed\n"),
    })


@pytest.fixture
def decryptor() -> FakeDecryptor:
    return FakeDecryptor()


@pytest.fixture
def config() -> GatewayConfig:
    """Default test gateway configuration (TCP, OS-picked port)."""
    return GatewayConfig(
        socket_file=None,
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        log_level="WARNING",
    )


def send_frame(address, frame: bytes, timeout: float = 5.0) -> bytes:
    """Send raw bytes to the gateway and read until it closes."""
    family = socket.AF_UNIX if isinstance(address, str) else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as s:
        s.settimeout(timeout)
        s.connect(address)
        s.sendall(frame)
        chunks = []
        while True:
            chunk = s.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


@pytest.fixture
def scgi_client() -> Callable[..., bytes]:
    return send_frame


class TestServer:
    """Test gateway helper that runs in a background thread."""

    __test__ = False

    def __init__(self, gateway: ScgiGateway):
        self.gateway = gateway
        self._thread: threading.Thread = None

    @property
    def address(self):
        return self.gateway.address

    def start(self):
        """Start the gateway in a background thread."""
        self._thread = threading.Thread(target=self.gateway.run, daemon=True)
        self._thread.start()

        if not self.gateway.wait_until_ready(timeout=5.0):
            raise RuntimeError("Gateway failed to start")

    def stop(self):
        """Stop the gateway."""
        self.gateway.stop()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def test_server(
    config: GatewayConfig,
    store: KeyStore,
    fetcher: FakeFetcher,
    decryptor: FakeDecryptor,
) -> Generator[TestServer, None, None]:
    """A running gateway backed by the fake fetcher and decryptor."""
    test_srv = TestServer(ScgiGateway(config, store, fetcher, decryptor))
    test_srv.start()

    yield test_srv

    test_srv.stop()
