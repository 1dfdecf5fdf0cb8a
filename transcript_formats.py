"""
Renderers that turn a canonical transcript into text, SRT or JSON downloads.
"""

import json
from typing import Iterable

from models import Transcript, TranscriptSegment

FORMATS = ("text", "srt", "json")

_EXTENSIONS = {
    "text": "txt",
    "srt": "srt",
    "json": "json",
}

_MIME_TYPES = {
    "text": "text/plain",
    "srt": "text/srt",
    "json": "application/json",
}


def format_srt_timestamp(seconds: float) -> str:
    """Format seconds as SRT timestamp: HH:MM:SS,mmm."""
    total_ms = int(round(seconds * 1000))
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    secs = (total_ms % 60_000) // 1000
    millis = total_ms % 1000
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def format_as_text(segments: Iterable[TranscriptSegment]) -> str:
    return " ".join(segment.text for segment in segments)


def format_as_srt(segments: Iterable[TranscriptSegment]) -> str:
    """Numbered cues separated by a blank line."""
    blocks = []
    for index, segment in enumerate(segments, start=1):
        start_time = format_srt_timestamp(segment.offset_seconds)
        end_time = format_srt_timestamp(segment.end_seconds)
        blocks.append(f"{index}\n{start_time} --> {end_time}\n{segment.text}\n")
    return "\n".join(blocks)


def format_as_json(segments: Iterable[TranscriptSegment]) -> str:
    return json.dumps([segment.to_dict() for segment in segments], indent=2, ensure_ascii=False)


def _check_format(fmt: str) -> str:
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported format {fmt!r}; expected one of {', '.join(FORMATS)}")
    return fmt


def format_transcript(transcript: Transcript, fmt: str) -> str:
    """Render a transcript in one of FORMATS."""
    renderers = {
        "text": format_as_text,
        "srt": format_as_srt,
        "json": format_as_json,
    }
    return renderers[_check_format(fmt)](transcript.segments)


def file_extension(fmt: str) -> str:
    return _EXTENSIONS[_check_format(fmt)]


def mime_type(fmt: str) -> str:
    return _MIME_TYPES[_check_format(fmt)]
