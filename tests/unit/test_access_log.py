"""
Unit tests for logging setup and the access log.
"""

import json
import logging

from ipfsjwe.access_log import AccessLog, RequestLog, setup_logging


def make_entry(**overrides) -> RequestLog:
    values = dict(
        connection_id="a1b2c3d4",
        peer="unix",
        key_id="abc",
        status=20,
        body_length=5,
        duration_ms=1.234,
        timestamp="17/Oct/2026:10:00:00 +0000",
    )
    values.update(overrides)
    return RequestLog(**values)


class TestAccessLog:
    """Tests for AccessLog.record()."""

    def test_text(self, caplog):
        """Test the default one-line text format."""
        with caplog.at_level(logging.INFO, logger="ipfsjwe.access"):
            line = AccessLog().record(make_entry())

        assert line == 'a1b2c3d4 unix "abc" 20 5 1.23ms'
        assert [r.getMessage() for r in caplog.records] == [line]

    def test_json(self):
        """Test the JSON format."""
        line = AccessLog("json").record(make_entry(status=51, body_length=0))
        entry = json.loads(line)

        assert entry["status"] == 51
        assert entry["duration_ms"] == 1.23
        assert entry["timestamp"] == "17/Oct/2026:10:00:00 +0000"

    def test_format_is_per_instance(self):
        """Test that setup_logging() does not change the format of new access logs."""
        setup_logging("WARNING")
        json_log = AccessLog("json")

        assert AccessLog().log_format == "text"
        assert json_log.log_format == "json"
