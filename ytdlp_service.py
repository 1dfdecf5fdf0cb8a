"""
yt-dlp strategy for fetching subtitle tracks from YouTube videos.

This module lists subtitle tracks with yt-dlp (metadata only, no media
download) and fetches the chosen track through the shared transport.

Features:
- Manual subtitles preferred over automatic captions
- json3 preferred over vtt for the chosen language
- Local recovery: a track that fails to parse gives way to the next candidate
- Proxy and track choices reported through evt()
"""

from typing import Any, Dict, List, Optional, Tuple

import yt_dlp

from error_handler import ErrorKind, SubtitleParseError, TranscriptError, classify_error
from log_events import evt
from models import CancellationToken, RawSubtitlePayload, SubtitleFormat
from proxy_http import HttpTransport, mask_proxy_url, mask_url_for_logging
from strategy_base import SubtitleStrategy, pick_language
from subtitle_parsers import parse_payload

TRACK_FIELDS = ("subtitles", "automatic_captions")

# Preference order within one language
TRACK_FORMATS = (
    ("json3", SubtitleFormat.SEGMENT_JSON),
    ("vtt", SubtitleFormat.VTT_CUE),
)


def select_subtitle_tracks(info: Dict[str, Any], language_code: str) -> List[Tuple[str, str, SubtitleFormat, str]]:
    """
    Order the usable subtitle tracks for a language.

    Manual subtitles come before automatic captions; within each, json3
    comes before vtt. Returns (field, language, format, url) tuples.
    """
    candidates = []
    for field in TRACK_FIELDS:
        tracks = info.get(field) or {}
        if not isinstance(tracks, dict):
            continue

        chosen = pick_language(tracks.keys(), language_code)
        if chosen is None:
            continue

        entries = [e for e in tracks.get(chosen) or [] if isinstance(e, dict) and e.get('url')]
        for ext, fmt in TRACK_FORMATS:
            for entry in entries:
                if entry.get('ext') == ext:
                    candidates.append((field, chosen, fmt, str(entry['url'])))

    return candidates


class YtDlpSubtitleStrategy(SubtitleStrategy):
    """List subtitle tracks with yt-dlp and fetch the best one."""

    name = "ytdlp"

    def __init__(self, transport: Optional[HttpTransport] = None):
        self.transport = transport or HttpTransport()

    def _ydl_opts(self, cancel: Optional[CancellationToken]) -> Dict[str, Any]:
        ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'noplaylist': True,
            'skip_download': True,
            'writesubtitles': True,
            'writeautomaticsub': True,
            'socket_timeout': self.transport.bounded_timeout(cancel),
            'http_headers': {'User-Agent': self.transport.user_agent},
        }

        proxy_url = self.transport.proxy_url
        if proxy_url:
            ydl_opts['proxy'] = proxy_url
            evt("ytdlp_proxy_configured", proxy=mask_proxy_url(proxy_url))

        return ydl_opts

    def _fetch_track(self, url: str, cancel: Optional[CancellationToken]) -> str:
        resp = self.transport.get(url, timeout=self.transport.bounded_timeout(cancel))
        if not resp.ok:
            raise TranscriptError(classify_error(status_code=resp.status_code),
                                  "Subtitle track request failed",
                                  signal=f"HTTP {resp.status_code}")
        return resp.text or ""

    def attempt(self, video_id: str, language_code: str,
                cancel: Optional[CancellationToken] = None) -> RawSubtitlePayload:
        video_url = f"https://www.youtube.com/watch?v={video_id}"

        with yt_dlp.YoutubeDL(self._ydl_opts(cancel)) as ydl:
            info = ydl.extract_info(video_url, download=False)

        if not info:
            raise TranscriptError(ErrorKind.UNKNOWN, "yt-dlp returned no info", signal="empty info")

        candidates = select_subtitle_tracks(info, language_code)
        evt("ytdlp_subtitle_candidates", extractor="yt_dlp", video_id=video_id, count=len(candidates),
            fields=",".join(sorted({c[0] for c in candidates})))

        if not candidates:
            raise TranscriptError(ErrorKind.NO_CAPTIONS_FOR_LANGUAGE,
                                  f"No subtitles found for language \"{language_code}\"",
                                  signal="yt-dlp listed no matching track")

        last_parse_error: Optional[SubtitleParseError] = None
        for field, chosen, fmt, url in candidates:
            if cancel is not None and cancel.cancelled:
                raise TranscriptError(ErrorKind.CANCELLED, "Cancelled between subtitle candidates")

            body = self._fetch_track(url, cancel)
            payload = RawSubtitlePayload(format=fmt, body=body, source_url=url, language_code=chosen)

            try:
                parse_payload(payload)
            except SubtitleParseError as e:
                last_parse_error = e
                evt("ytdlp_track_unparsable", extractor="yt_dlp", field=field, language=chosen,
                    format=fmt.value, url=mask_url_for_logging(url), detail=str(e)[:200])
                continue

            evt("ytdlp_track_selected", extractor="yt_dlp", field=field, language=chosen,
                format=fmt.value, bytes=len(body))
            return payload

        raise last_parse_error
