"""
Structured pipeline events.

Every event is a single INFO record on the root logger with an empty message
and its fields passed as `extra`, so JsonFormatter renders it as one flat
JSON line. Field names must not shadow LogRecord attributes ("name",
"message", "args" and friends); use "detail" for free text.
"""

import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger()

MAX_DETAIL_CHARS = 200


def evt(event: str, **fields) -> None:
    """
    Emit one structured event.

        evt("strategy_fallback", strategy="watch_page", kind="rate_limited")
    """
    logger.info("", extra=dict(fields, event=event))


def error_detail(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {str(exc)[:MAX_DETAIL_CHARS]}"


class StageTimer:
    """
    Bracket one unit of work with stage_start and stage_result events.

    The result carries dur_ms and an outcome: "success" on a clean exit
    unless mark() chose another one, "error" with a detail when the block
    raises. Exceptions always propagate.
    """

    def __init__(self, stage: str, **context_fields):
        self.stage = stage
        self.context_fields = context_fields
        self.outcome: Optional[str] = None
        self._started: Optional[float] = None

    def mark(self, outcome: str) -> None:
        self.outcome = outcome

    def elapsed_ms(self) -> int:
        if self._started is None:
            return 0
        return int((time.monotonic() - self._started) * 1000)

    def __enter__(self):
        self._started = time.monotonic()
        evt("stage_start", stage=self.stage, **self.context_fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        result: Dict[str, Any] = dict(self.context_fields, stage=self.stage, dur_ms=self.elapsed_ms())
        if exc_value is not None:
            result.update(outcome="error", detail=error_detail(exc_value))
        else:
            result["outcome"] = self.outcome or "success"
        evt("stage_result", **result)
        return False


def transcript_finished(video_id: str, outcome: str, duration_ms: int, source: Optional[str] = None,
                        **fields) -> None:
    """Final outcome of one acquisition call, emitted once per fetch."""
    if source:
        fields["source"] = source
    evt("transcript_finished", video_id=video_id, outcome=outcome, dur_ms=duration_ms, **fields)
