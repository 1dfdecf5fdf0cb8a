"""
Error classification for transcript acquisition.

Maps heterogeneous upstream failure signals (HTTP status codes, exception
types, message text) onto a closed taxonomy used by the orchestrator for
retry/fallback decisions and surfaced to callers.
"""

from enum import Enum
from typing import Optional

import requests
from youtube_transcript_api._errors import (
    AgeRestricted,
    CouldNotRetrieveTranscript,
    InvalidVideoId,
    IpBlocked,
    NoTranscriptFound,
    NotTranslatable,
    PoTokenRequired,
    RequestBlocked,
    TranscriptsDisabled,
    TranslationLanguageNotAvailable,
    VideoUnavailable,
    VideoUnplayable,
    YouTubeDataUnparsable,
    YouTubeRequestFailed,
)


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NO_CAPTIONS_FOR_LANGUAGE = "no_captions_for_language"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    PARSE_FAILURE = "parse_failure"
    UNKNOWN = "unknown"
    CANCELLED = "cancelled"


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.UPSTREAM_UNAVAILABLE,
    ErrorKind.UNKNOWN,
})


class TranscriptError(Exception):
    """
    A failure already mapped into the error taxonomy.

    Attributes:
        kind: ErrorKind of the failure
        detail: Human-readable explanation
        signal: The distinguishing upstream signal (status code, message fragment)
    """

    def __init__(self, kind: ErrorKind, detail: str, signal: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        self.signal = signal
        super().__init__(self._render())

    def _render(self) -> str:
        if self.signal:
            return f"{self.detail} (signal: {self.signal})"
        return self.detail

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "signal": self.signal,
        }


class SubtitleParseError(TranscriptError):
    """Raised by parsers when a payload has an unrecognized shape."""

    def __init__(self, detail: str, signal: Optional[str] = None):
        super().__init__(ErrorKind.PARSE_FAILURE, detail, signal)


# Ordered: the first group that matches wins
_MESSAGE_SIGNATURES = [
    (ErrorKind.INVALID_INPUT, (
        "video not found",
        "invalid video id",
        "video does not exist",
        "video unavailable",
    )),
    (ErrorKind.NO_CAPTIONS_FOR_LANGUAGE, (
        "transcript is disabled",
        "transcripts are disabled",
        "subtitles are disabled",
        "no transcript found",
        "no transcripts are available",
        "could not retrieve a transcript",
        "transcript not available",
        "no caption track",
        "no subtitles",
    )),
    (ErrorKind.RATE_LIMITED, (
        "429",
        "403",
        "rate limit",
        "too many requests",
        "forbidden",
        "blocked",
        "captcha",
        "before you continue to youtube",
        "sign in to confirm you",
    )),
    (ErrorKind.UPSTREAM_UNAVAILABLE, (
        "timed out",
        "timeout",
        "connection",
        "service unavailable",
        "bad gateway",
        "temporarily unavailable",
        "500",
        "502",
        "503",
        "504",
    )),
    (ErrorKind.PARSE_FAILURE, (
        "unparsable",
        "parse error",
        "failed to parse",
        "not well-formed",
    )),
]


def _classify_status(status_code: Optional[int]) -> Optional[ErrorKind]:
    if status_code is None:
        return None
    if status_code in (403, 429):
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.NO_CAPTIONS_FOR_LANGUAGE
    if status_code == 400:
        return ErrorKind.INVALID_INPUT
    if 500 <= status_code < 600:
        return ErrorKind.UPSTREAM_UNAVAILABLE
    return None


def _classify_message(message: str) -> Optional[ErrorKind]:
    lowered = message.lower()
    for kind, patterns in _MESSAGE_SIGNATURES:
        if any(pattern in lowered for pattern in patterns):
            return kind
    return None


def _classify_library_error(exc: Exception) -> Optional[ErrorKind]:
    """Map youtube-transcript-api exception types (API 1.x)."""
    if isinstance(exc, (RequestBlocked, IpBlocked)):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (TranscriptsDisabled, NoTranscriptFound,
                        NotTranslatable, TranslationLanguageNotAvailable)):
        return ErrorKind.NO_CAPTIONS_FOR_LANGUAGE
    if isinstance(exc, (AgeRestricted, PoTokenRequired, VideoUnplayable)):
        return ErrorKind.NO_CAPTIONS_FOR_LANGUAGE
    if isinstance(exc, (InvalidVideoId, VideoUnavailable)):
        return ErrorKind.INVALID_INPUT
    if isinstance(exc, YouTubeDataUnparsable):
        return ErrorKind.PARSE_FAILURE
    if isinstance(exc, YouTubeRequestFailed):
        # reason is the wrapped HTTPError text, e.g. "429 Client Error: Too Many Requests"
        return _classify_message(getattr(exc, "reason", "") or "") or ErrorKind.UPSTREAM_UNAVAILABLE
    return None


def status_code_of(exc: Exception) -> Optional[int]:
    """Extract an HTTP status code from an exception if it carries one."""
    response = getattr(exc, 'response', None)
    status = getattr(response, 'status_code', None)
    if isinstance(status, int):
        return status
    status = getattr(exc, 'status_code', None)
    return status if isinstance(status, int) else None


def classify_error(exc: Optional[Exception] = None,
                   status_code: Optional[int] = None,
                   message: Optional[str] = None) -> ErrorKind:
    """
    Classify a failure signal into exactly one ErrorKind.

    Precedence: already-classified errors, library exception types,
    transport exception types, HTTP status code, message substrings.
    """
    if isinstance(exc, TranscriptError):
        return exc.kind

    if exc is not None:
        kind = _classify_library_error(exc)
        if kind is not None:
            return kind

        if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
            return ErrorKind.UPSTREAM_UNAVAILABLE

        if status_code is None:
            status_code = status_code_of(exc)

    kind = _classify_status(status_code)
    if kind is not None:
        return kind

    if message is not None:
        text = message
    elif isinstance(exc, CouldNotRetrieveTranscript):
        # Library messages carry a long generic footer; only the cause is relevant
        text = getattr(exc, "cause", "") or _first_line(str(exc))
    else:
        text = str(exc) if exc is not None else ""

    return _classify_message(text) or ErrorKind.UNKNOWN


def _first_line(text: str) -> str:
    stripped = text.strip()
    return stripped.splitlines()[0] if stripped else ""


def _signal_of(exc: Exception) -> str:
    status = status_code_of(exc)
    if status is not None:
        return f"HTTP {status}"
    line = _first_line(str(exc))[:160]
    return f"{type(exc).__name__}: {line}" if line else type(exc).__name__


def to_transcript_error(exc: Exception) -> TranscriptError:
    """Wrap any exception as a TranscriptError, keeping the distinguishing signal."""
    if isinstance(exc, TranscriptError):
        return exc

    kind = classify_error(exc)
    return TranscriptError(kind, _DEFAULT_DETAILS[kind], _signal_of(exc))


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


_DEFAULT_DETAILS = {
    ErrorKind.INVALID_INPUT: "Invalid YouTube video ID or video not found",
    ErrorKind.NO_CAPTIONS_FOR_LANGUAGE: "No transcript available for this video in the requested language",
    ErrorKind.RATE_LIMITED: "YouTube is rate limiting or blocking requests",
    ErrorKind.UPSTREAM_UNAVAILABLE: "YouTube did not respond successfully",
    ErrorKind.PARSE_FAILURE: "Transcript data could not be parsed",
    ErrorKind.UNKNOWN: "Unexpected error while fetching the transcript",
    ErrorKind.CANCELLED: "Transcript request was cancelled",
}


def user_message(error: TranscriptError, video_id: str, language_code: Optional[str] = None) -> str:
    """Get a caller-facing error message that names the upstream signal."""
    lang = language_code or "the requested language"
    messages = {
        ErrorKind.INVALID_INPUT: f"Invalid YouTube video ID or video not found: {video_id}.",
        ErrorKind.NO_CAPTIONS_FOR_LANGUAGE: f"No transcript is available for video {video_id} in language \"{lang}\".",
        ErrorKind.RATE_LIMITED: f"YouTube is rate limiting or blocking transcript requests for video {video_id}. Wait a few minutes and try again.",
        ErrorKind.UPSTREAM_UNAVAILABLE: f"YouTube could not be reached while fetching video {video_id}. Please try again later.",
        ErrorKind.PARSE_FAILURE: f"The transcript for video {video_id} was returned in a format that could not be parsed.",
        ErrorKind.UNKNOWN: f"An error occurred while fetching the transcript for video {video_id}.",
        ErrorKind.CANCELLED: f"The transcript request for video {video_id} was cancelled before it completed.",
    }
    text = messages[error.kind]
    if error.signal:
        text = f"{text} Upstream signal: {error.signal}"
    return text


def http_status_for(kind: ErrorKind) -> int:
    return {
        ErrorKind.INVALID_INPUT: 400,
        ErrorKind.NO_CAPTIONS_FOR_LANGUAGE: 404,
        ErrorKind.RATE_LIMITED: 429,
        ErrorKind.UPSTREAM_UNAVAILABLE: 503,
        ErrorKind.PARSE_FAILURE: 502,
        ErrorKind.UNKNOWN: 500,
        ErrorKind.CANCELLED: 504,
    }[kind]
