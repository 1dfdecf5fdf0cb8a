"""
Tests for text, SRT and JSON transcript rendering.
"""

import json
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import Transcript, TranscriptSegment
from transcript_formats import (
    FORMATS,
    file_extension,
    format_as_srt,
    format_srt_timestamp,
    format_transcript,
    mime_type,
)


def _transcript():
    return Transcript(
        video_id="jNQXAC9IVRw",
        segments=(
            TranscriptSegment("All right, so here we are", 1.2, 2.16),
            TranscriptSegment("in front of the elephants", 3.36, 2.5),
        ),
        source_language="en",
        source="yt_api",
    )


class TestSrtTimestamp(unittest.TestCase):

    def test_values(self):
        cases = {
            0: "00:00:00,000",
            1.2: "00:00:01,200",
            3.36: "00:00:03,360",
            61.5: "00:01:01,500",
            3725.004: "01:02:05,004",
        }
        for seconds, expected in cases.items():
            with self.subTest(seconds=seconds):
                self.assertEqual(format_srt_timestamp(seconds), expected)

    def test_rounding_carries(self):
        self.assertEqual(format_srt_timestamp(59.9999), "00:01:00,000")


class TestFormatTranscript(unittest.TestCase):

    def test_text(self):
        self.assertEqual(format_transcript(_transcript(), "text"),
                         "All right, so here we are in front of the elephants")

    def test_srt(self):
        expected = (
            "1\n00:00:01,200 --> 00:00:03,360\nAll right, so here we are\n"
            "\n"
            "2\n00:00:03,360 --> 00:00:05,860\nin front of the elephants\n"
        )
        self.assertEqual(format_transcript(_transcript(), "srt"), expected)

    def test_json(self):
        data = json.loads(format_transcript(_transcript(), "json"))
        self.assertEqual(data[0], {"text": "All right, so here we are", "duration": 2.16, "offset": 1.2})
        self.assertEqual(len(data), 2)

    def test_empty_transcript(self):
        empty = Transcript("jNQXAC9IVRw", (), "en")
        self.assertEqual(format_transcript(empty, "text"), "")
        self.assertEqual(format_as_srt(empty.segments), "")
        self.assertEqual(json.loads(format_transcript(empty, "json")), [])

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            format_transcript(_transcript(), "pdf")


class TestFormatMetadata(unittest.TestCase):

    def test_extensions_and_mime_types(self):
        self.assertEqual(FORMATS, ("text", "srt", "json"))
        self.assertEqual([file_extension(f) for f in FORMATS], ["txt", "srt", "json"])
        self.assertEqual([mime_type(f) for f in FORMATS], ["text/plain", "text/srt", "application/json"])

    def test_unknown_format_metadata(self):
        with self.assertRaises(ValueError):
            file_extension("docx")
        with self.assertRaises(ValueError):
            mime_type("docx")


if __name__ == '__main__':
    unittest.main()
