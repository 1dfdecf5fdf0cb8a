"""
Canonical transcript model shared by parsers, strategies and the orchestrator.

Everything here is created and discarded within a single acquisition call.
"""

import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


VIDEO_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')

_VIDEO_ID_URL_PATTERNS = [
    re.compile(r'(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]{11})'),
    re.compile(r'youtube\.com/watch\?(?:.*&)?v=([A-Za-z0-9_-]{11})'),
    re.compile(r'youtube\.com/(?:shorts|live|v)/([A-Za-z0-9_-]{11})'),
    re.compile(r'youtube-nocookie\.com/embed/([A-Za-z0-9_-]{11})'),
]


class InvalidSegment(ValueError):
    """Raised when a segment is built with a negative offset or duration."""


@dataclass(frozen=True)
class TranscriptSegment:
    """One timed span of transcript text."""
    text: str
    offset_seconds: float
    duration_seconds: float

    def __post_init__(self):
        if self.offset_seconds < 0:
            raise InvalidSegment(f"offset_seconds must be >= 0, got {self.offset_seconds}")
        if self.duration_seconds < 0:
            raise InvalidSegment(f"duration_seconds must be >= 0, got {self.duration_seconds}")

    @property
    def end_seconds(self) -> float:
        return self.offset_seconds + self.duration_seconds

    def to_dict(self) -> dict:
        return {
            'text': self.text,
            'duration': self.duration_seconds,
            'offset': self.offset_seconds,
        }


@dataclass(frozen=True)
class Transcript:
    """Ordered segments for one video in one language."""
    video_id: str
    segments: Tuple[TranscriptSegment, ...]
    source_language: str
    source: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.segments


class SubtitleFormat(Enum):
    SEGMENT_JSON = "segment_json"
    CUE_XML = "cue_xml"
    VTT_CUE = "vtt_cue"


@dataclass(frozen=True)
class RawSubtitlePayload:
    """Raw upstream subtitle body, tagged with the parser that understands it."""
    format: SubtitleFormat
    body: Union[str, bytes]
    source_url: str
    language_code: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.body or b'')


@dataclass
class RetryState:
    """Retry bookkeeping for one strategy within one acquisition call."""
    attempt: int = 1
    last_error: Optional[Exception] = field(default=None)

    def __post_init__(self):
        if self.attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {self.attempt}")


class CancellationToken:
    """
    Caller-supplied cancellation signal with an optional deadline.

    `timeout` is measured in seconds from construction. The token reports
    itself cancelled once cancel() is called or the deadline passes.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """
        Sleep for up to `seconds`, waking early on cancellation.

        Returns True when the token was cancelled (explicitly or by deadline).
        """
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return True
        if self._event.wait(seconds):
            return True
        return self.cancelled


def is_valid_video_id(video_id: Optional[str]) -> bool:
    """Return True for an 11-character identifier drawn from [A-Za-z0-9_-]."""
    return isinstance(video_id, str) and bool(VIDEO_ID_PATTERN.match(video_id))


def extract_video_id(url_or_id: Optional[str]) -> Optional[str]:
    """
    Extract an 11-character video ID from a watch/short/embed URL or a bare ID.

    Returns None when nothing recognizable is found.
    """
    if not url_or_id or not isinstance(url_or_id, str):
        return None

    candidate = url_or_id.strip()
    if is_valid_video_id(candidate):
        return candidate

    for pattern in _VIDEO_ID_URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1)

    return None
