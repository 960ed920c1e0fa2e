"""
Unit tests for key records and the key store.
"""

import json
from types import MappingProxyType

import pytest

from ipfsjwe.errors import KeyLoadError
from ipfsjwe.keystore import (
    MAX_RECORD_LENGTH,
    KeyRecord,
    KeyStore,
    load_records,
    read_key,
)


class TestKeyRecord:
    """Tests for building records from JWKs."""

    def test_from_jwk(self, sample_jwk: dict):
        """Test that contract metadata is promoted to attributes."""
        record = KeyRecord.from_jwk(sample_jwk)

        assert record.id == "abc"
        assert record.algorithm == "dir"
        assert record.key_type == "oct"
        assert record.mime == "text/plain"
        assert record.content_id == "bafyabc"
        assert record.missing_metadata is None

    def test_metadata_excludes_key_material(self, sample_jwk: dict):
        """Test the split between key material and metadata."""
        record = KeyRecord.from_jwk(dict(sample_jwk, comment="hi"))

        assert set(record.metadata) == {"mime", "ipfs", "comment"}
        assert "k" in record.material
        assert "k" not in record.metadata

    def test_mappings_are_read_only(self, sample_jwk: dict):
        """Test that a record cannot be mutated after load."""
        record = KeyRecord.from_jwk(sample_jwk)

        assert isinstance(record.material, MappingProxyType)
        with pytest.raises(TypeError):
            record.metadata["mime"] = "text/html"

    def test_source_dict_changes_do_not_leak(self, sample_jwk: dict):
        """Test that the record copies the JWK."""
        record = KeyRecord.from_jwk(sample_jwk)
        sample_jwk["kid"] = "changed"

        assert record.material["kid"] == "abc"

    def test_missing_mime(self, sample_jwk: dict):
        """Test that mime is reported before the CID."""
        del sample_jwk["mime"]
        del sample_jwk["ipfs"]
        record = KeyRecord.from_jwk(sample_jwk)

        assert record.mime is None
        assert record.missing_metadata == "Metadata key `mime` not found."

    def test_missing_ipfs(self, sample_jwk: dict):
        """Test a record with no `ipfs` object at all."""
        del sample_jwk["ipfs"]
        record = KeyRecord.from_jwk(sample_jwk)

        assert record.missing_metadata == "Metadata key `ipfs` not found."

    def test_missing_cid(self, sample_jwk: dict):
        """Test a record whose `ipfs` object lacks `cid`."""
        sample_jwk["ipfs"] = {"path": "/x"}
        record = KeyRecord.from_jwk(sample_jwk)

        assert record.content_id is None
        assert record.missing_metadata == "Metadata key `ipfs.cid` not found."

    def test_wrong_types_count_as_missing(self, sample_jwk: dict):
        """Test that non-string mime or cid are treated as absent."""
        sample_jwk["mime"] = 42
        sample_jwk["ipfs"] = {"cid": ["x"]}
        record = KeyRecord.from_jwk(sample_jwk)

        assert record.mime is None
        assert record.content_id is None

    def test_no_alg(self, sample_jwk: dict):
        """Test that `alg` is optional."""
        del sample_jwk["alg"]
        assert KeyRecord.from_jwk(sample_jwk).algorithm == ""

    @pytest.mark.parametrize("jwk", [
        [],
        "string",
        {"kid": "abc"},
        {"kty": "oct"},
        {"kty": "oct", "kid": ""},
        {"kty": "oct", "kid": 7},
        {"kty": "oct", "kid": "abc", "alg": 1},
    ])
    def test_invalid_jwk(self, jwk):
        """Test that unusable JWKs are rejected."""
        with pytest.raises(KeyLoadError):
            KeyRecord.from_jwk(jwk)

    def test_from_json_invalid(self):
        """Test malformed JSON text."""
        with pytest.raises(KeyLoadError, match="Invalid key JSON"):
            KeyRecord.from_json("{not json")


class TestLoadRecords:
    """Tests for parsing JSON-lines key collections."""

    def test_parses_each_line(self, sample_jwk: dict):
        """Test one record per line."""
        second = dict(sample_jwk, kid="def")
        lines = [json.dumps(sample_jwk) + "\n", json.dumps(second) + "\n"]

        records = list(load_records(lines))

        assert [r.id for r in records] == ["abc", "def"]

    def test_skips_blank_lines(self, sample_jwk: dict):
        """Test that blank and whitespace-only lines are ignored."""
        lines = ["\n", json.dumps(sample_jwk) + "\n", "   \n"]
        assert len(list(load_records(lines))) == 1

    def test_error_has_line_number(self, sample_jwk: dict):
        """Test that parse errors name the offending line."""
        lines = [json.dumps(sample_jwk), "{broken"]

        with pytest.raises(KeyLoadError, match="^Line 2: "):
            list(load_records(lines))

    def test_line_too_long(self):
        """Test the per-record size limit."""
        lines = ["x" * (MAX_RECORD_LENGTH + 1)]

        with pytest.raises(KeyLoadError, match="exceeds"):
            list(load_records(lines))


class TestKeyStore:
    """Tests for the KeyStore mapping."""

    def test_lookup(self, store: KeyStore):
        """Test hits and misses."""
        assert store.lookup("abc").mime == "text/plain"
        assert store.lookup("zzz") is None

    def test_container_protocol(self, store: KeyStore):
        """Test len, in, and iteration over key IDs."""
        assert len(store) == 5
        assert "abc" in store
        assert "zzz" not in store
        assert set(store) == {"abc", "gz", "nomime", "noipfs", "nocid"}

    def test_duplicate_kid_last_wins(self, sample_jwk: dict):
        """Test that a later record replaces an earlier one."""
        first = KeyRecord.from_jwk(sample_jwk)
        second = KeyRecord.from_jwk(dict(sample_jwk, mime="text/gemini"))

        store = KeyStore([first, second])

        assert len(store) == 1
        assert store.lookup("abc").mime == "text/gemini"

    def test_load_file(self, tmp_path, sample_jwk: dict):
        """Test loading a keys file from disk."""
        path = tmp_path / "keys.jsonarray"
        path.write_text(json.dumps(sample_jwk) + "\n\n" + json.dumps(dict(sample_jwk, kid="b")) + "\n")

        store = KeyStore.load(str(path))

        assert set(store) == {"abc", "b"}

    def test_load_missing_file(self, tmp_path):
        """Test that an unreadable file is a KeyLoadError."""
        with pytest.raises(KeyLoadError, match="Cannot read keys file"):
            KeyStore.load(str(tmp_path / "nope.jsonarray"))

    def test_load_is_all_or_nothing(self, tmp_path, sample_jwk: dict):
        """Test that one bad record fails the whole load."""
        path = tmp_path / "keys.jsonarray"
        path.write_text(json.dumps(sample_jwk) + "\n" + '{"kty": "oct"}\n')

        with pytest.raises(KeyLoadError, match="Line 2"):
            KeyStore.load(str(path))

    def test_load_non_utf8(self, tmp_path):
        """Test that undecodable bytes are a KeyLoadError."""
        path = tmp_path / "keys.jsonarray"
        path.write_bytes(b"\xff\xfe\x00garbage\n")

        with pytest.raises(KeyLoadError):
            KeyStore.load(str(path))


class TestReadKey:
    """Tests for single JWK files."""

    def test_read_key(self, tmp_path, sample_jwk: dict):
        """Test a pretty-printed standalone JWK."""
        path = tmp_path / "abc.jwk"
        path.write_text(json.dumps(sample_jwk, indent=2))

        record = read_key(str(path))

        assert record.id == "abc"
        assert record.content_id == "bafyabc"

    def test_read_key_missing(self, tmp_path):
        """Test a missing key file."""
        with pytest.raises(KeyLoadError):
            read_key(str(tmp_path / "nope.jwk"))
