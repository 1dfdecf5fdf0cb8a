#!/usr/bin/env python3
"""
YouTube Transcript API strategy
Fetches captions through youtube-transcript-api 1.x (list/fetch instance API)
and re-encodes them as a segment-JSON payload.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from youtube_transcript_api import YouTubeTranscriptApi
from youtube_transcript_api._errors import NoTranscriptFound
from youtube_transcript_api.proxies import GenericProxyConfig

from log_events import evt
from models import CancellationToken, RawSubtitlePayload, SubtitleFormat
from strategy_base import SubtitleStrategy, pick_language


class LibraryTranscriptStrategy(SubtitleStrategy):
    """
    Primary strategy backed by youtube-transcript-api.

    Library exceptions propagate untouched so the classifier can map them
    by type.
    """

    name = "yt_api"

    def __init__(self, transport=None):
        self.logger = logging.getLogger(__name__)
        self.transport = transport

    def _proxy_config(self) -> Optional[GenericProxyConfig]:
        proxy_url = getattr(self.transport, 'proxy_url', None)
        if not proxy_url:
            return None
        return GenericProxyConfig(http_url=proxy_url, https_url=proxy_url)

    def _api(self) -> YouTubeTranscriptApi:
        """Create an API instance; the library mutates its session, so it is never shared."""
        proxy_config = self._proxy_config()
        if proxy_config is not None:
            self.logger.debug("Creating YouTubeTranscriptApi with proxy config")
            return YouTubeTranscriptApi(proxy_config=proxy_config)
        return YouTubeTranscriptApi()

    def attempt(self, video_id: str, language_code: str,
                cancel: Optional[CancellationToken] = None) -> RawSubtitlePayload:
        api = self._api()

        transcript_list = api.list(video_id)
        transcripts = list(transcript_list)
        available = [t.language_code for t in transcripts]
        self.logger.debug(f"Available transcript languages for {video_id}: {available}")

        chosen = pick_language(available, language_code)
        if chosen is None:
            raise NoTranscriptFound(video_id, [language_code], transcript_list)

        transcript = next(t for t in transcripts if t.language_code == chosen)
        evt("yt_api_track_picked", video_id=video_id, language=chosen,
            generated=bool(getattr(transcript, 'is_generated', False)))

        fetched = transcript.fetch()
        snippets = [
            {'text': snippet.text, 'start': snippet.start, 'duration': snippet.duration}
            for snippet in fetched
        ]

        if not snippets:
            self.logger.info(f"YouTube Transcript API returned no snippets for {video_id} ({chosen})")

        body = encode_segment_json(snippets)
        return RawSubtitlePayload(
            format=SubtitleFormat.SEGMENT_JSON,
            body=body,
            source_url=f"https://www.youtube.com/watch?v={video_id}",
            language_code=chosen,
        )


def encode_segment_json(snippets: List[Dict[str, Any]]) -> str:
    """
    Encode library snippets (seconds) as a segment-JSON document (milliseconds).
    """
    events = []
    for snippet in snippets:
        events.append({
            'tStartMs': int(round(float(snippet['start']) * 1000)),
            'dDurationMs': int(round(float(snippet.get('duration') or 0) * 1000)),
            'segs': [{'utf8': snippet.get('text') or ''}],
        })
    return json.dumps({'events': events}, ensure_ascii=False)
