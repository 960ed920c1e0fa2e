"""
=============================================================================
KEY STORE
=============================================================================

Keys are JSON Web Keys (RFC 7517), one JSON object per line:

    {"kty":"oct","kid":"abc","alg":"dir","k":"...","mime":"text/plain","ipfs":{"cid":"bafy..."}}
     └──────────── key material ──────────┘ └──────────── metadata ─────────────────────┘

Besides the key material, each record carries the metadata the gateway
needs to serve it:

    mime        Content type of the decrypted document
    ipfs.cid    Content identifier of the encrypted blob in IPFS

=============================================================================
IMMUTABILITY
=============================================================================

The store is built once at startup and shared by every worker thread.
Nothing is ever written to it afterwards, so readers need no lock. The
backing dict is wrapped in a MappingProxyType to keep it that way.

=============================================================================
"""

import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from .errors import KeyLoadError


logger = logging.getLogger(__name__)


# Longest accepted line in a key collection file (250 KiB)
MAX_RECORD_LENGTH = 250 * 1024

# JWK members that hold key material rather than metadata (RFC 7517/7518)
KEY_MATERIAL_MEMBERS = frozenset({
    "kty", "use", "key_ops", "alg", "kid",
    "x5u", "x5c", "x5t", "x5t#S256",
    "k",                                       # oct
    "n", "e", "d", "p", "q", "dp", "dq", "qi", "oth",  # RSA
    "crv", "x", "y",                           # EC / OKP
})


@dataclass(frozen=True)
class KeyRecord:
    """
    A single JWK plus the metadata the gateway serves it with.

    Attributes:
        id: The key ID (JWK "kid"), unique within a store.
        algorithm: JWE key-management algorithm (JWK "alg"), may be empty.
        material: The complete JWK as a read-only mapping.
        metadata: Every non key-material member of the JWK.
        content_id: IPFS CID of the encrypted blob, if declared.
        mime: Content type of the plaintext, if declared.
    """

    id: str
    algorithm: str = ""
    material: Mapping[str, Any] = field(default_factory=dict, repr=False)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    content_id: Optional[str] = None
    mime: Optional[str] = None

    @property
    def key_type(self) -> str:
        """JWK "kty" (oct, RSA, EC, OKP)."""
        return self.material.get("kty", "")

    @property
    def missing_metadata(self) -> Optional[str]:
        """
        Describe the first missing required metadata field, or None.

        The order matches the pipeline: mime is checked before the CID.
        """
        if self.mime is None:
            return "Metadata key `mime` not found."
        if self.content_id is None:
            if not isinstance(self.metadata.get("ipfs"), Mapping):
                return "Metadata key `ipfs` not found."
            return "Metadata key `ipfs.cid` not found."
        return None

    @classmethod
    def from_jwk(cls, jwk: Dict[str, Any]) -> "KeyRecord":
        """
        Build a record from a decoded JWK object.

        Raises:
            KeyLoadError: If the object is not a usable JWK.
        """
        if not isinstance(jwk, dict):
            raise KeyLoadError(f"Key record must be a JSON object, got {type(jwk).__name__}")
        if not jwk.get("kty"):
            raise KeyLoadError("Key record has no `kty`.")
        kid = jwk.get("kid")
        if not isinstance(kid, str) or not kid:
            raise KeyLoadError("Key record has no `kid`.")

        algorithm = jwk.get("alg", "")
        if not isinstance(algorithm, str):
            raise KeyLoadError(f"Key `{kid}` has a non-string `alg`.")

        metadata = {
            name: value for name, value in jwk.items()
            if name not in KEY_MATERIAL_MEMBERS
        }

        # Promote the two contract fields; wrong types count as missing
        mime = metadata.get("mime")
        if not isinstance(mime, str):
            mime = None
        ipfs = metadata.get("ipfs")
        content_id = ipfs.get("cid") if isinstance(ipfs, dict) else None
        if not isinstance(content_id, str):
            content_id = None

        return cls(
            id=kid,
            algorithm=algorithm,
            material=MappingProxyType(dict(jwk)),
            metadata=MappingProxyType(metadata),
            content_id=content_id,
            mime=mime,
        )

    @classmethod
    def from_json(cls, text: str) -> "KeyRecord":
        """Parse a record from JSON text."""
        try:
            jwk = json.loads(text)
        except json.JSONDecodeError as e:
            raise KeyLoadError(f"Invalid key JSON: {e}") from e
        return cls.from_jwk(jwk)


class KeyStore:
    """
    Read-only mapping of key ID to KeyRecord.

    Usage:
        store = KeyStore.load("keys.jsonl")
        record = store.lookup("abc")   # KeyRecord or None
    """

    def __init__(self, records: Iterable[KeyRecord] = ()):
        keys: Dict[str, KeyRecord] = {}
        for record in records:
            # Later records replace earlier ones with the same kid
            keys[record.id] = record
        self._keys: Mapping[str, KeyRecord] = MappingProxyType(keys)

    @classmethod
    def load(cls, path: str) -> "KeyStore":
        """
        Load a JSON-lines key collection file.

        Fail-fast: one bad record fails the whole load.

        Raises:
            KeyLoadError: If the file cannot be read or any record is invalid.
        """
        try:
            with open(path, "r", encoding="utf-8") as handle:
                store = cls(load_records(handle))
        except OSError as e:
            raise KeyLoadError(f"Cannot read keys file `{path}`: {e}") from e
        except UnicodeDecodeError as e:
            raise KeyLoadError(f"Keys file `{path}` is not UTF-8: {e}") from e
        logger.info(f"Read {len(store)} keys from `{path}`.")
        return store

    def lookup(self, key_id: str) -> Optional[KeyRecord]:
        """Return the record for key_id, or None."""
        return self._keys.get(key_id)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)


def load_records(lines: Iterable[str]) -> Iterator[KeyRecord]:
    """
    Parse key records from an iterable of JSON lines.

    Blank lines are skipped. Errors carry the 1-based line number.
    """
    for line_number, line in enumerate(lines, start=1):
        if len(line) > MAX_RECORD_LENGTH:
            raise KeyLoadError(
                f"Line {line_number}: record exceeds {MAX_RECORD_LENGTH} bytes"
            )
        line = line.strip()
        if not line:
            continue
        try:
            yield KeyRecord.from_json(line)
        except KeyLoadError as e:
            raise KeyLoadError(f"Line {line_number}: {e}") from e


def read_key(path: str) -> KeyRecord:
    """
    Read a single standalone JWK file.

    Raises:
        KeyLoadError: If the file cannot be read or is not a valid JWK.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except OSError as e:
        raise KeyLoadError(f"Cannot read key file `{path}`: {e}") from e
    return KeyRecord.from_json(text)
