"""
Tests for the JSON log formatter.
"""

import json
import logging

from message_explorer.logging_utils import ExplorerJsonFormatter, request_id_ctx


def format_record(message: str = "hello", **extra) -> dict:
    formatter = ExplorerJsonFormatter("%(ts)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord("message_explorer.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


class TestExplorerJsonFormatter:

    def test_timestamp_and_level(self):
        line = format_record()

        assert line["level"] == "INFO"
        assert line["name"] == "message_explorer.test"
        assert line["message"] == "hello"
        assert line["ts"].endswith("Z")
        assert "T" in line["ts"]

    def test_request_id_from_context(self):
        token = request_id_ctx.set("abc123")
        try:
            line = format_record()
        finally:
            request_id_ctx.reset(token)

        assert line["request_id"] == "abc123"

    def test_no_request_id_outside_a_request(self):
        assert "request_id" not in format_record()

    def test_extra_fields_are_kept(self):
        line = format_record(cursor=41, returned=10, backfilled=3)

        assert (line["cursor"], line["returned"], line["backfilled"]) == (41, 10, 3)
