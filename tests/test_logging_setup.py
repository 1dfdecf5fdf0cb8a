"""
Unit tests for logging_setup.py: JSON formatting, request context,
rate limiting and library noise suppression.
"""

import json
import logging
import os
import sys
import threading
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from logging_setup import (
    JsonFormatter,
    RateLimitFilter,
    clear_request_ctx,
    configure_logging,
    get_logger,
    get_request_ctx,
    set_request_ctx,
)


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("test", level, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestContext(unittest.TestCase):
    """Test thread-local request correlation."""

    def tearDown(self):
        clear_request_ctx()

    def test_set_and_clear(self):
        set_request_ctx(video_id="jNQXAC9IVRw", lang="en")
        set_request_ctx(request_id="req1")

        self.assertEqual(get_request_ctx(), {"video_id": "jNQXAC9IVRw", "lang": "en", "request_id": "req1"})

        clear_request_ctx()
        self.assertEqual(get_request_ctx(), {})

    def test_context_is_thread_local(self):
        set_request_ctx(video_id="jNQXAC9IVRw")
        seen = {}

        def worker():
            seen["ctx"] = get_request_ctx()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        self.assertEqual(seen["ctx"], {})
        self.assertEqual(get_request_ctx(), {"video_id": "jNQXAC9IVRw"})

    def test_get_returns_copy(self):
        set_request_ctx(video_id="jNQXAC9IVRw")
        get_request_ctx()["video_id"] = "changed"
        self.assertEqual(get_request_ctx()["video_id"], "jNQXAC9IVRw")


class TestJsonFormatter(unittest.TestCase):
    """Test single-line JSON output."""

    def tearDown(self):
        clear_request_ctx()

    def test_basic_fields(self):
        output = JsonFormatter().format(_record("plain message"))
        data = json.loads(output)

        self.assertEqual(data["lvl"], "INFO")
        self.assertEqual(data["detail"], "plain message")
        self.assertTrue(data["ts"].endswith("Z"))
        self.assertNotIn("\n", output)

    def test_ordered_fields_first(self):
        record = _record("", event="stage_result", stage="yt_api", outcome="success", dur_ms=12, extra_field=1)
        data = json.loads(JsonFormatter().format(record))

        keys = list(data)
        self.assertEqual(keys[:2], ["ts", "lvl"])
        self.assertLess(keys.index("stage"), keys.index("extra_field"))
        self.assertEqual(data["dur_ms"], 12)

    def test_context_fields(self):
        set_request_ctx(video_id="jNQXAC9IVRw", lang="de")
        data = json.loads(JsonFormatter().format(_record()))

        self.assertEqual(data["video_id"], "jNQXAC9IVRw")
        self.assertEqual(data["lang"], "de")

    def test_exception_info(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JsonFormatter().format(record))
        self.assertIn("RuntimeError: boom", data["exc"])

    def test_non_serializable_values(self):
        data = json.loads(JsonFormatter().format(_record(payload=object())))
        self.assertIn("object", data["payload"])


class TestRateLimitFilter(unittest.TestCase):
    """Test log spam suppression."""

    def test_suppresses_after_limit(self):
        log_filter = RateLimitFilter(per_key=2, window_sec=60)
        results = [log_filter.filter(_record("same message")) for _ in range(5)]

        # Two pass, one suppression marker, then dropped
        self.assertEqual(results, [True, True, True, False, False])

    def test_marker_appended(self):
        log_filter = RateLimitFilter(per_key=1, window_sec=60)
        log_filter.filter(_record("repeat"))
        marker = _record("repeat")
        log_filter.filter(marker)
        self.assertTrue(marker.getMessage().endswith("[suppressed]"))

    def test_distinct_events_counted_separately(self):
        log_filter = RateLimitFilter(per_key=1, window_sec=60)
        self.assertTrue(log_filter.filter(_record("", event="stage_start")))
        self.assertTrue(log_filter.filter(_record("", event="stage_result")))

    def test_events_never_limited(self):
        log_filter = RateLimitFilter(per_key=1, window_sec=60)
        results = [log_filter.filter(_record("", event="stage_start")) for _ in range(5)]
        self.assertEqual(results, [True] * 5)

    def test_window_expiry(self):
        log_filter = RateLimitFilter(per_key=1, window_sec=10)
        with patch("logging_setup.time.time", return_value=1000.0):
            self.assertTrue(log_filter.filter(_record("tick")))
            self.assertTrue(log_filter.filter(_record("tick")))
            self.assertFalse(log_filter.filter(_record("tick")))
        with patch("logging_setup.time.time", return_value=1011.0):
            self.assertTrue(log_filter.filter(_record("tick")))


class TestConfigureLogging(unittest.TestCase):
    """Test root logger configuration."""

    def setUp(self):
        self.root = logging.getLogger()
        self.saved_handlers = self.root.handlers[:]
        self.saved_level = self.root.level

    def tearDown(self):
        for handler in self.root.handlers[:]:
            self.root.removeHandler(handler)
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)

    def test_json_handler_installed(self):
        root = configure_logging("DEBUG", use_json=True)

        self.assertIs(root, self.root)
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        handler = root.handlers[0]
        self.assertIsInstance(handler.formatter, JsonFormatter)
        self.assertTrue(any(isinstance(f, RateLimitFilter) for f in handler.filters))

    def test_plain_handler(self):
        root = configure_logging("warning", use_json=False)

        self.assertEqual(root.level, logging.WARNING)
        self.assertNotIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_defaults_to_info(self):
        self.assertEqual(configure_logging("chatty").level, logging.INFO)

    def test_library_noise_suppressed(self):
        configure_logging("DEBUG")
        for library in ("urllib3", "yt_dlp", "youtube_transcript_api"):
            self.assertEqual(logging.getLogger(library).level, logging.WARNING)

    def test_get_logger(self):
        self.assertEqual(get_logger("transcript_service").name, "transcript_service")


if __name__ == '__main__':
    unittest.main()
