"""
Logging infrastructure for transcript acquisition.

One JSON object per line on stderr. Each line carries the request context
(request id, video id, language) of the thread that emitted it, so a single
acquisition can be followed across strategies, retries and fallbacks.
Structured events from log_events.evt() always pass; free-form messages are
rate limited per key.
"""

import json
import logging
import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional


_ctx_store = threading.local()


def _ctx() -> Dict[str, str]:
    ctx = getattr(_ctx_store, 'fields', None)
    if ctx is None:
        ctx = _ctx_store.fields = {}
    return ctx


def set_request_ctx(video_id: Optional[str] = None, lang: Optional[str] = None,
                    request_id: Optional[str] = None) -> None:
    """
    Attach correlation fields to every log line from the current thread.

    Fields passed as None are left unchanged, so a route can set the
    request id and the orchestrator add video id and language later.
    """
    updates = {'video_id': video_id, 'lang': lang, 'request_id': request_id}
    _ctx().update({key: value for key, value in updates.items() if value is not None})


def clear_request_ctx() -> None:
    _ctx().clear()


def get_request_ctx() -> Dict[str, str]:
    """Copy of the current thread's correlation fields."""
    return dict(_ctx())


class JsonFormatter(logging.Formatter):
    """
    Single-line JSON with a stable leading schema:
    ts, lvl, request_id, video_id, lang, stage, event, strategy, attempt,
    kind, outcome, dur_ms, detail, then any other extra fields.
    """

    LEADING_FIELDS = ('stage', 'event', 'strategy', 'attempt', 'kind', 'outcome', 'dur_ms', 'detail')

    # LogRecord internals that never belong in the output
    RECORD_ATTRS = frozenset(
        logging.LogRecord('', logging.INFO, '', 0, '', (), None).__dict__
    ) | {'message', 'asctime'}

    @staticmethod
    def _timestamp(record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{dt.microsecond // 1000:03d}Z'

    def _fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        data: Dict[str, Any] = {'ts': self._timestamp(record), 'lvl': record.levelname}
        data.update(get_request_ctx())

        for name in self.LEADING_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                data[name] = value

        for name, value in record.__dict__.items():
            if name.startswith('_') or name in self.RECORD_ATTRS or name in data or value is None:
                continue
            data[name] = value

        message = record.getMessage()
        if message and 'detail' not in data:
            data['detail'] = message
        if record.exc_info:
            data['exc'] = self.formatException(record.exc_info)
        return data

    def format(self, record: logging.LogRecord) -> str:
        try:
            return json.dumps(self._fields(record), separators=(',', ':'), ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            fallback = {
                'ts': self._timestamp(record),
                'lvl': record.levelname,
                'detail': str(record.msg),
                'format_error': str(e),
            }
            return json.dumps(fallback, ensure_ascii=False, default=str)


class RateLimitFilter(logging.Filter):
    """
    Drop repeats of the same free-form message beyond `per_key` within
    `window_sec`. The first dropped record of a burst is let through with a
    "[suppressed]" marker. Records carrying an `event` field are never
    limited: they are the pipeline's outcome trail.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self._seen: Dict[str, Deque[float]] = defaultdict(deque)
        self._marked = set()
        self._lock = threading.Lock()

    @staticmethod
    def _key(record: logging.LogRecord) -> str:
        return f"{record.levelname}:{record.getMessage()[:100]}"

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, 'event', None):
            return True

        key = self._key(record)
        now = time.time()

        with self._lock:
            seen = self._seen[key]
            while seen and seen[0] <= now - self.window_sec:
                seen.popleft()

            if len(seen) < self.per_key:
                seen.append(now)
                self._marked.discard(key)
                return True

            if key in self._marked:
                return False

            self._marked.add(key)
            record.msg = f"{record.getMessage()} [suppressed]"
            record.args = ()
            return True


# Third-party loggers that are chatty at INFO
NOISY_LIBRARIES = ('urllib3', 'requests', 'yt_dlp', 'youtube_transcript_api', 'werkzeug')


def configure_logging(log_level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Install a single stderr handler on the root logger.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR); unknown
            names fall back to INFO
        use_json: JSON lines with rate limiting (True) or plain text (False)

    Returns:
        The root logger
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
        handler.addFilter(RateLimitFilter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root_logger.addHandler(handler)

    for library in NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
