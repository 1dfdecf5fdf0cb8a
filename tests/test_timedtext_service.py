"""
Tests for the watch-page timedtext strategy.

The HTTP transport is mocked; no network access is needed.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from error_handler import ErrorKind, TranscriptError
from models import CancellationToken, SubtitleFormat
from subtitle_parsers import parse_payload
from timedtext_service import (
    WatchPageStrategy,
    extract_caption_tracks,
    force_track_format,
    unescape_base_url,
)

VIDEO_ID = "jNQXAC9IVRw"

WATCH_HTML = (
    r'<html><script>var ytInitialPlayerResponse = {"captions":{"playerCaptionsTracklistRenderer":'
    r'{"captionTracks":[{"baseUrl":"https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en&fmt=srv3",'
    r'"name":{"simpleText":"English [auto]"},"languageCode":"en","kind":"asr"},'
    r'{"baseUrl":"https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=de","languageCode":"de"}],'
    r'"audioTracks":[]}}};</script></html>'
)

ESCAPED_HTML = (
    r'<script>ytplayer.config = {"args":{"player_response":"{\"captions\":{\"playerCaptionsTracklistRenderer\":'
    r'{\"captionTracks\":[{\"baseUrl\":\"https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw\\u0026lang=en-US\",'
    r'\"languageCode\":\"en-US\"}]}}}"}};</script>'
)

TRACK_XML = (
    '<?xml version="1.0" encoding="utf-8" ?><transcript>'
    '<text start="1.2" dur="2.16">All right, so here we are</text>'
    '<text start="3.36" dur="2.5">in front of the elephants</text>'
    '</transcript>'
)


def _response(text="", status_code=200, url="https://www.youtube.com/watch?v=jNQXAC9IVRw",
              content_type="text/html; charset=utf-8"):
    return Mock(ok=status_code < 400, status_code=status_code, text=text, url=url,
                headers={"content-type": content_type})


def _transport(*responses):
    transport = Mock()
    transport.bounded_timeout.return_value = 15
    transport.get.side_effect = list(responses)
    return transport


class TestExtractCaptionTracks(unittest.TestCase):

    def test_raw_json_array(self):
        tracks = extract_caption_tracks(WATCH_HTML)

        self.assertEqual([t["languageCode"] for t in tracks], ["en", "de"])
        self.assertEqual(tracks[0]["baseUrl"],
                         "https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en&fmt=srv3")
        self.assertEqual(tracks[0]["kind"], "asr")

    def test_escaped_json_inside_string(self):
        tracks = extract_caption_tracks(ESCAPED_HTML)

        self.assertEqual(len(tracks), 1)
        self.assertEqual(tracks[0]["languageCode"], "en-US")
        self.assertEqual(tracks[0]["baseUrl"],
                         "https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en-US")

    def test_brackets_inside_strings(self):
        html = '{"captionTracks":[{"baseUrl":"https://x/?a=1","name":{"simpleText":"[CC] ]English["},"languageCode":"en"}]}'
        tracks = extract_caption_tracks(html)
        self.assertEqual(tracks[0]["name"]["simpleText"], "[CC] ]English[")

    def test_missing_tracks(self):
        self.assertIsNone(extract_caption_tracks("<html><body>no player here</body></html>"))
        self.assertIsNone(extract_caption_tracks('{"captionTracks":[{"baseUrl":'))

    def test_empty_track_list(self):
        self.assertEqual(extract_caption_tracks('{"captionTracks":[]}'), [])


class TestTrackUrl(unittest.TestCase):

    def test_force_format_replaces_existing(self):
        url = force_track_format("https://www.youtube.com/api/timedtext?v=abc&fmt=srv3&lang=en")
        self.assertEqual(url, "https://www.youtube.com/api/timedtext?v=abc&lang=en&fmt=srv1")

    def test_force_format_appends(self):
        url = force_track_format("https://www.youtube.com/api/timedtext?v=abc", fmt="json3")
        self.assertTrue(url.endswith("?v=abc&fmt=json3"))

    def test_unescape_base_url(self):
        self.assertEqual(unescape_base_url(r"https://x/?a=1&b=2"), "https://x/?a=1&b=2")


class TestWatchPageStrategy(unittest.TestCase):

    def test_successful_attempt(self):
        transport = _transport(_response(WATCH_HTML), _response(TRACK_XML, content_type="text/xml"))

        payload = WatchPageStrategy(transport).attempt(VIDEO_ID, "en")

        self.assertEqual(payload.format, SubtitleFormat.CUE_XML)
        self.assertEqual(payload.language_code, "en")
        self.assertEqual(payload.source_url,
                         "https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en&fmt=srv1")
        self.assertEqual(len(parse_payload(payload)), 2)

        watch_call, track_call = transport.get.call_args_list
        self.assertEqual(watch_call[0][0], "https://www.youtube.com/watch?v=jNQXAC9IVRw")
        headers = track_call[1]["headers"]
        self.assertEqual(headers["Referer"], "https://www.youtube.com/watch?v=jNQXAC9IVRw")
        self.assertEqual(headers["Origin"], "https://www.youtube.com")
        self.assertIn("text/xml", headers["Accept"])

    def test_prefix_language_match(self):
        transport = _transport(_response(ESCAPED_HTML), _response(TRACK_XML, content_type="text/xml"))
        payload = WatchPageStrategy(transport).attempt(VIDEO_ID, "en")
        self.assertEqual(payload.language_code, "en-US")

    def test_exact_match_preferred(self):
        transport = _transport(_response(WATCH_HTML), _response(TRACK_XML, content_type="text/xml"))
        payload = WatchPageStrategy(transport).attempt(VIDEO_ID, "DE")
        self.assertEqual(payload.language_code, "de")

    def test_language_not_available(self):
        transport = _transport(_response(WATCH_HTML))

        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(transport).attempt(VIDEO_ID, "fr")

        self.assertEqual(ctx.exception.kind, ErrorKind.NO_CAPTIONS_FOR_LANGUAGE)
        self.assertEqual(ctx.exception.signal, "available=en,de")
        self.assertEqual(transport.get.call_count, 1)

    def test_consent_page_is_rate_limited(self):
        html = "<html><body><h1>Before you continue to YouTube</h1></body></html>"
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(html))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.signal, "html_consent_page")

    def test_bot_check_is_rate_limited(self):
        html = "<html>Sign in to confirm you're not a bot</html>"
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(html))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.signal, "bot_check")

    def test_consent_redirect(self):
        resp = _response("<html>consent</html>", url="https://consent.youtube.com/m?continue=x")
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(resp)).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)

    def test_video_without_captions(self):
        html = '<html><script>var ytInitialPlayerResponse = {"playabilityStatus":{"status":"OK"}};</script></html>'
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(html))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.NO_CAPTIONS_FOR_LANGUAGE)

    def test_unplayable_video(self):
        html = '<script>var ytInitialPlayerResponse = {"playabilityStatus":{"status":"ERROR","reason":"Video unavailable"}};</script>'
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(html))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)

    def test_watch_page_statuses(self):
        cases = {
            404: ErrorKind.INVALID_INPUT,
            429: ErrorKind.RATE_LIMITED,
            503: ErrorKind.UPSTREAM_UNAVAILABLE,
        }
        for status, expected in cases.items():
            with self.subTest(status=status):
                with self.assertRaises(TranscriptError) as ctx:
                    WatchPageStrategy(_transport(_response("", status_code=status))).attempt(VIDEO_ID, "en")
                self.assertEqual(ctx.exception.kind, expected)
                self.assertEqual(ctx.exception.signal, f"HTTP {status}")

    def test_empty_watch_page(self):
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(""))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.UPSTREAM_UNAVAILABLE)

    def test_empty_track_body(self):
        transport = _transport(_response(WATCH_HTML), _response("", content_type="text/xml"))
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(transport).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.UPSTREAM_UNAVAILABLE)
        self.assertEqual(ctx.exception.signal, "content_length=0")

    def test_html_track_body(self):
        transport = _transport(_response(WATCH_HTML),
                               _response("<!DOCTYPE html><html>Before you continue to YouTube</html>"))
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(transport).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.signal, "html_consent_page")

    def test_track_status_error(self):
        transport = _transport(_response(WATCH_HTML), _response("Forbidden", status_code=403, content_type="text/plain"))
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(transport).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.signal, "HTTP 403: Forbidden")

    def test_track_without_base_url(self):
        html = '{"captionTracks":[{"languageCode":"en"}]}'
        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(_transport(_response(html))).attempt(VIDEO_ID, "en")
        self.assertEqual(ctx.exception.kind, ErrorKind.PARSE_FAILURE)

    def test_cancelled_before_track_fetch(self):
        token = CancellationToken()
        token.cancel()
        transport = _transport(_response(WATCH_HTML))

        with self.assertRaises(TranscriptError) as ctx:
            WatchPageStrategy(transport).attempt(VIDEO_ID, "en", token)

        self.assertEqual(ctx.exception.kind, ErrorKind.CANCELLED)
        self.assertEqual(transport.get.call_count, 1)
        transport.bounded_timeout.assert_called_with(token)


if __name__ == '__main__':
    unittest.main()
