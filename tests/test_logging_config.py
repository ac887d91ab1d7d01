"""
Tests for log formatting and sensitive value masking.
"""

import json
import logging

from logging_config import (
    JSONFormatter,
    TextFormatter,
    mask_sensitive,
    reset_request_id,
    set_request_id,
)


def _record(msg="hello", extra=None):
    record = logging.LogRecord("videotube.test", logging.INFO, __file__, 10, msg, None, None)
    if extra is not None:
        record.extra = extra
    return record


class TestMaskSensitive:
    """Tests for mask_sensitive."""

    def test_masks_nested_keys(self):
        masked = mask_sensitive({"user": {"password": "x", "refreshToken": "y", "userName": "ann"}})

        assert masked["user"]["password"] == "***MASKED***"
        assert masked["user"]["refreshToken"] == "***MASKED***"
        assert masked["user"]["userName"] == "ann"

    def test_truncates_long_values(self):
        masked = mask_sensitive({"note": "a" * 5000})

        assert len(masked["note"]) < 5000


class TestFormatters:
    """Tests for the JSON and text formatters."""

    def test_json_includes_request_id_and_masked_extra(self):
        token = set_request_id("req-123")
        try:
            line = JSONFormatter(environment="test").format(_record(extra={"password": "p", "user_id": "u1"}))
        finally:
            reset_request_id(token)

        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["request_id"] == "req-123"
        assert data["environment"] == "test"
        assert data["extra"] == {"password": "***MASKED***", "user_id": "u1"}

    def test_text_without_request_id(self):
        line = TextFormatter().format(_record(extra={"video_id": "v1"}))

        assert "req=" not in line
        assert "hello" in line
        assert "video_id=v1" in line
