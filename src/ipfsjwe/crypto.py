"""
=============================================================================
JWE DECRYPTION
=============================================================================

Documents are stored as JWE compact serializations (RFC 7516):

    BASE64URL(header).BASE64URL(encrypted_key).BASE64URL(iv).
    BASE64URL(ciphertext).BASE64URL(tag)

The header names the key-management algorithm ("alg", e.g. dir, A256KW,
RSA-OAEP) and the content encryption ("enc", e.g. A256GCM). The JOSE work
itself is done by python-jose; this module only adapts a KeyRecord into
the key form python-jose expects and maps its errors onto DecryptError.

    kty "oct"      → raw key bytes (from the base64url "k" member)
    kty RSA / EC   → the JWK mapping itself

=============================================================================
"""

import base64
import binascii
import logging
from typing import Any, Union

from jose import jwe
from jose.exceptions import JOSEError

from .errors import DecryptError
from .keystore import KeyRecord


logger = logging.getLogger(__name__)


def b64url_decode(value: str) -> bytes:
    """Decode unpadded base64url, as used by JWK members."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class JWEDecryptor:
    """
    Decrypts JWE compact tokens with the key held in a KeyRecord.

    Stateless, so one instance is shared by every worker thread.
    """

    def decrypt(self, record: KeyRecord, ciphertext: bytes) -> bytes:
        """
        Decrypt a JWE token.

        Args:
            record: Key record whose material decrypts the token.
            ciphertext: The compact-serialized JWE (already decompressed).

        Returns:
            The plaintext bytes.

        Raises:
            DecryptError: Bad key, malformed token, algorithm mismatch,
                          or authentication failure.
        """
        token = ciphertext.strip()
        try:
            header = jwe.get_unverified_header(token)
        except (JOSEError, ValueError) as e:
            raise DecryptError(f"Invalid JWE: {e}") from e

        token_alg = header.get("alg", "")
        if record.algorithm and token_alg != record.algorithm:
            raise DecryptError(
                f"JWE algorithm `{token_alg}` does not match key algorithm "
                f"`{record.algorithm}`."
            )

        key = self._key_for(record)
        try:
            plaintext = jwe.decrypt(token, key)
        except (JOSEError, ValueError, TypeError) as e:
            raise DecryptError(f"JWE decryption failed: {e}") from e

        if plaintext is None:
            raise DecryptError("JWE decryption failed.")
        logger.debug(f"Decrypted {len(plaintext)} bytes with key `{record.id}`")
        return plaintext

    @staticmethod
    def _key_for(record: KeyRecord) -> Union[bytes, dict]:
        """Turn the record's JWK into the key argument python-jose takes."""
        kty = record.key_type
        if kty == "oct":
            k: Any = record.material.get("k")
            if not isinstance(k, str):
                raise DecryptError(f"Key `{record.id}` has no symmetric `k` member.")
            try:
                return b64url_decode(k)
            except (binascii.Error, ValueError) as e:
                raise DecryptError(f"Key `{record.id}` has a malformed `k`: {e}") from e
        if kty in ("RSA", "EC"):
            return dict(record.material)
        raise DecryptError(f"Unsupported key type `{kty}` for key `{record.id}`.")
