"""
Watch-page timedtext strategy.

This module scrapes the caption track list from the public watch page and
fetches the chosen track directly:
- Caption track discovery from the embedded player response (raw JSON array
  or backslash-escaped JSON inside a string).
- Language choice shared with the other strategies (exact, then prefix).
- baseUrl un-escaping and a forced XML cue format (fmt=srv1).
- Immediate fetch with Referer/Origin overrides, since signed track URLs
  expire quickly.
- Strict response validation so consent walls and empty bodies surface as
  classified errors instead of parse failures.
"""

import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

import requests

from error_handler import ErrorKind, TranscriptError, classify_error
from log_events import evt
from logging_setup import get_logger
from models import CancellationToken, RawSubtitlePayload, SubtitleFormat
from proxy_http import HttpTransport, mask_url_for_logging
from strategy_base import SubtitleStrategy, pick_language

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
YOUTUBE_ORIGIN = "https://www.youtube.com"
TRACK_FORMAT = "srv1"
TRACK_ACCEPT = "text/xml,application/xml,application/xhtml+xml,text/html;q=0.9,text/plain;q=0.8,*/*;q=0.5"

_TRACK_MARKERS = (
    ('"captionTracks":', False),
    ('\\"captionTracks\\":', True),
)

_JS_ESCAPE_PATTERN = re.compile(r'\\(.)')

_CONSENT_MARKERS = (
    "before you continue to youtube",
)
_BOT_CHECK_MARKERS = (
    "sign in to confirm you",
    "unusual traffic",
    "not a robot",
)

logger = get_logger(__name__)


# --- Caption track discovery ---

def _balanced_array(text: str) -> Optional[str]:
    """Return the JSON array at the start of `text`, honouring strings and nesting."""
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '[':
            depth += 1
        elif ch == ']':
            depth -= 1
            if depth == 0:
                return text[:i + 1]
    return None


def _load_tracks(raw: str) -> Optional[List[Dict[str, Any]]]:
    try:
        tracks = json.loads(raw)
    except json.JSONDecodeError:
        try:
            tracks = json.loads(raw.replace('\\u0026', '&').replace('\\"', '"'))
        except json.JSONDecodeError:
            return None
    if not isinstance(tracks, list):
        return None
    return [track for track in tracks if isinstance(track, dict)]


def extract_caption_tracks(html: str) -> Optional[List[Dict[str, Any]]]:
    """
    Extract caption track descriptors from watch page HTML.

    Returns None when the page carries no track list at all.
    """
    for marker, escaped in _TRACK_MARKERS:
        index = html.find(marker)
        if index < 0:
            continue

        remainder = html[index + len(marker):]
        if escaped:
            remainder = _JS_ESCAPE_PATTERN.sub(r'\1', remainder)
        remainder = remainder.lstrip()
        if not remainder.startswith('['):
            continue

        raw = _balanced_array(remainder)
        if raw is None:
            evt("watch_page_tracks_unterminated", escaped=escaped)
            continue

        tracks = _load_tracks(raw)
        if tracks is not None:
            return tracks
        evt("watch_page_tracks_unparsable", escaped=escaped, preview=raw[:100])

    return None


def unescape_base_url(base_url: str) -> str:
    """Undo JS escaping left in a track baseUrl."""
    return (base_url
            .replace('\\u0026', '&')
            .replace('\\u003D', '=')
            .replace('\\u003d', '=')
            .replace('\\"', '"')
            .replace('\\\\', '\\'))


def force_track_format(base_url: str, fmt: str = TRACK_FORMAT) -> str:
    """Set the fmt query parameter, replacing any value already present."""
    parsed = urlparse(base_url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != 'fmt']
    params.append(('fmt', fmt))
    return urlunparse(parsed._replace(query=urlencode(params)))


# --- Validation ---

def _looks_blocked(body_lower: str) -> Optional[str]:
    for marker in _CONSENT_MARKERS:
        if marker in body_lower:
            return "html_consent_page"
    for marker in _BOT_CHECK_MARKERS:
        if marker in body_lower:
            return "bot_check"
    return None


def _validate_watch_page(resp: requests.Response, video_id: str) -> str:
    """Check the watch page response and return its HTML."""
    if not resp.ok:
        kind = ErrorKind.INVALID_INPUT if resp.status_code == 404 else classify_error(status_code=resp.status_code)
        raise TranscriptError(kind, f"Watch page request failed for {video_id}",
                              signal=f"HTTP {resp.status_code}")

    if "consent.youtube.com" in (resp.url or ""):
        evt("watch_page_consent_redirect", video_id=video_id)
        raise TranscriptError(ErrorKind.RATE_LIMITED, "Watch page redirected to a consent wall",
                              signal="html_consent_page")

    html = resp.text or ""
    if not html:
        raise TranscriptError(ErrorKind.UPSTREAM_UNAVAILABLE, "Watch page body was empty",
                              signal="content_length=0")
    return html


def _no_tracks_error(html: str, video_id: str) -> TranscriptError:
    """Explain why a watch page carries no caption tracks."""
    lowered = html.lower()
    blocked = _looks_blocked(lowered)
    if blocked:
        evt("watch_page_blocked", video_id=video_id, reason=blocked)
        return TranscriptError(ErrorKind.RATE_LIMITED, "Watch page is behind a consent or bot check",
                               signal=blocked)

    if re.search(r'"playabilityStatus":\{"status":"ERROR"', html):
        return TranscriptError(ErrorKind.INVALID_INPUT, f"Video {video_id} is unavailable",
                               signal="playabilityStatus=ERROR")

    return TranscriptError(ErrorKind.NO_CAPTIONS_FOR_LANGUAGE, f"Video {video_id} has no caption tracks",
                           signal="captionTracks missing")


def _validate_track_response(resp: requests.Response, url: str) -> str:
    """
    Guard before parsing. Checks status, body length and HTML walls.

    Returns the body text for a response that looks like timedtext XML.
    """
    ct = (resp.headers.get("content-type") or "").lower()
    body = resp.text or ""

    if not resp.ok:
        preview = " ".join(body[:80].split())
        raise TranscriptError(classify_error(status_code=resp.status_code),
                              "Caption track request failed",
                              signal=f"HTTP {resp.status_code}" + (f": {preview}" if preview else ""))

    if not body.strip():
        evt("timedtext_empty_body", status_code=resp.status_code, content_type=ct,
            url=mask_url_for_logging(url))
        raise TranscriptError(ErrorKind.UPSTREAM_UNAVAILABLE,
                              "Caption track response was empty; the signed URL may have expired",
                              signal="content_length=0")

    if "html" in ct or body.lstrip().lower().startswith(("<!doctype html", "<html")):
        reason = _looks_blocked(body.lower()) or "html_response"
        evt("timedtext_html_response", content_type=ct, reason=reason, content_preview=body[:100])
        raise TranscriptError(ErrorKind.RATE_LIMITED, "Caption track request returned an HTML page",
                              signal=reason)

    return body


# --- Strategy ---

class WatchPageStrategy(SubtitleStrategy):
    """Scrape the watch page for caption tracks and fetch one as XML cues."""

    name = "watch_page"

    def __init__(self, transport: Optional[HttpTransport] = None):
        self.transport = transport or HttpTransport()

    def attempt(self, video_id: str, language_code: str,
                cancel: Optional[CancellationToken] = None) -> RawSubtitlePayload:
        watch_url = WATCH_URL.format(video_id=video_id)
        resp = self.transport.get(watch_url, timeout=self.transport.bounded_timeout(cancel))
        html = _validate_watch_page(resp, video_id)

        tracks = extract_caption_tracks(html)
        if not tracks:
            raise _no_tracks_error(html, video_id)

        available = [track.get('languageCode', '') for track in tracks]
        chosen = pick_language(available, language_code)
        evt("watch_page_tracks_found", video_id=video_id, count=len(tracks),
            languages=",".join(code for code in available if code), chosen=chosen)

        if chosen is None:
            raise TranscriptError(ErrorKind.NO_CAPTIONS_FOR_LANGUAGE,
                                  f"No caption track found for language \"{language_code}\"",
                                  signal=f"available={','.join(code for code in available if code) or 'none'}")

        track = next(t for t in tracks if t.get('languageCode') == chosen)
        base_url = track.get('baseUrl')
        if not base_url:
            raise TranscriptError(ErrorKind.PARSE_FAILURE, "Caption track has no baseUrl",
                                  signal=f"languageCode={chosen}")

        track_url = force_track_format(unescape_base_url(base_url))
        logger.debug(f"Fetching caption track {mask_url_for_logging(track_url)}")

        if cancel is not None and cancel.cancelled:
            raise TranscriptError(ErrorKind.CANCELLED, "Cancelled before caption track fetch")

        # Signed track URLs expire quickly; fetch immediately
        track_resp = self.transport.get(
            track_url,
            headers={
                'Accept': TRACK_ACCEPT,
                'Referer': watch_url,
                'Origin': YOUTUBE_ORIGIN,
            },
            timeout=self.transport.bounded_timeout(cancel),
        )
        body = _validate_track_response(track_resp, track_url)

        evt("watch_page_track_fetched", video_id=video_id, language=chosen, bytes=len(body),
            kind=track.get('kind', ''))
        return RawSubtitlePayload(
            format=SubtitleFormat.CUE_XML,
            body=body,
            source_url=track_url,
            language_code=chosen,
        )
