"""
=============================================================================
RETRIEVAL PIPELINE
=============================================================================

Turns a key ID into a plaintext document:

    key ID
      │
      ├──► 1. LOOKUP        store.lookup(key_id)         miss → NOT_FOUND
      ├──► 2. MIME          record.mime                  none → METADATA_MISSING
      ├──► 3. CID           record.content_id            none → METADATA_MISSING
      ├──► 4. FETCH         fetcher.fetch(cid)           error → FETCH_FAILED
      ├──► 5. DECOMPRESS    gunzip if gzip-framed        error → DECODE_FAILED
      ├──► 6. DECRYPT       decryptor.decrypt(record, …) error → DECODE_FAILED
      │
      └──► Success(mime, plaintext)

Each stage short-circuits on failure. The failure kinds are deliberately
coarse: the front-end maps them to protocol status codes without looking
at error text. There are no retries; one attempt per request.

=============================================================================
"""

import gzip
import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

from .errors import DecryptError, FetchError
from .keystore import KeyRecord, KeyStore


logger = logging.getLogger(__name__)


GZIP_MAGIC = b"\x1f\x8b"


class Fetcher(Protocol):
    """Anything that can fetch a blob from the content-addressed store."""

    def fetch(self, content_id: str) -> bytes: ...


class Decryptor(Protocol):
    """Anything that can decrypt a blob with a key record."""

    def decrypt(self, record: KeyRecord, ciphertext: bytes) -> bytes: ...


class FailureKind(Enum):
    NOT_FOUND = "not_found"
    METADATA_MISSING = "metadata_missing"
    FETCH_FAILED = "fetch_failed"
    DECODE_FAILED = "decode_failed"


@dataclass(frozen=True)
class Success:
    """Document retrieved and decrypted."""
    mime: str
    body: bytes


@dataclass(frozen=True)
class Failure:
    """Retrieval stopped at some stage; detail is the human-readable reason."""
    kind: FailureKind
    detail: str


RetrievalOutcome = Union[Success, Failure]


def decompress(blob: bytes) -> bytes:
    """
    Gunzip the blob if it starts with the gzip magic, else return it as-is.

    Raises:
        DecryptError: If a gzip-framed blob is corrupt or truncated.
    """
    if not blob.startswith(GZIP_MAGIC):
        return blob
    try:
        return gzip.decompress(blob)
    except (OSError, EOFError, zlib.error) as e:
        raise DecryptError(f"Decompression failed: {e}") from e


def _resolve(store: KeyStore, key_id: str) -> Union[KeyRecord, Failure]:
    record = store.lookup(key_id)
    if record is None:
        return Failure(FailureKind.NOT_FOUND, f"Key `{key_id}` not found.")
    missing = record.missing_metadata
    if missing is not None:
        return Failure(FailureKind.METADATA_MISSING, missing)
    return record


def fetch_document(record: KeyRecord, fetcher: Fetcher, decryptor: Decryptor) -> bytes:
    """
    Fetch, decompress, and decrypt the document a record points at.

    Used directly by the command-line fetch/decrypt commands, which want
    exceptions rather than outcomes.

    Raises:
        FetchError: Missing CID or the content store failed.
        DecryptError: Decompression or decryption failed.
    """
    if record.content_id is None:
        raise FetchError(record.missing_metadata or "Metadata key `ipfs.cid` not found.")
    blob = fetcher.fetch(record.content_id)
    return decryptor.decrypt(record, decompress(blob))


def retrieve(
    store: KeyStore,
    fetcher: Fetcher,
    decryptor: Decryptor,
    key_id: str,
) -> RetrievalOutcome:
    """
    Run the retrieval pipeline for one request.

    Never raises for expected failures; every stage maps onto a Failure.

    Args:
        store: The loaded key store.
        fetcher: Content-store client.
        decryptor: JWE decryptor.
        key_id: The client-supplied key ID.

    Returns:
        Success or Failure, exactly one per call.
    """
    resolved = _resolve(store, key_id)
    if isinstance(resolved, Failure):
        logger.info(f"Key `{key_id}`: {resolved.detail}")
        return resolved
    record = resolved

    try:
        blob = fetcher.fetch(record.content_id)
    except FetchError as e:
        logger.warning(f"Key `{key_id}`: fetch of `{record.content_id}` failed: {e}")
        return Failure(FailureKind.FETCH_FAILED, str(e))

    try:
        plaintext = decryptor.decrypt(record, decompress(blob))
    except DecryptError as e:
        logger.warning(f"Key `{key_id}`: {e}")
        return Failure(FailureKind.DECODE_FAILED, str(e))

    return Success(mime=record.mime, body=plaintext)
