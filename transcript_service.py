import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import tenacity

from error_handler import ErrorKind, TranscriptError, classify_error, is_retryable, to_transcript_error
from log_events import evt, StageTimer, transcript_finished
from logging_setup import get_logger, set_request_ctx, clear_request_ctx
from models import (
    CancellationToken,
    RawSubtitlePayload,
    RetryState,
    Transcript,
    TranscriptSegment,
    is_valid_video_id,
)
from proxy_http import HttpTransport
from reliability_config import PipelineConfig, get_pipeline_config
from strategy_base import SubtitleStrategy
from subtitle_parsers import parse_payload
from timedtext_service import WatchPageStrategy
from youtube_transcript_api_compat import LibraryTranscriptStrategy
from ytdlp_service import YtDlpSubtitleStrategy

logger = get_logger(__name__)


class RetryAction(Enum):
    RETRY = "retry"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay: float = 0.0


def decide_retry(state: RetryState, error: Exception, max_attempts: int,
                 config: PipelineConfig) -> RetryDecision:
    """
    Decide what happens after a failed attempt.

    Non-retryable kinds and exhausted budgets fall back to the next strategy.
    Rate limiting backs off on a slower curve than other retryable failures.
    """
    kind = classify_error(error)

    if not is_retryable(kind):
        return RetryDecision(RetryAction.FALLBACK)
    if state.attempt >= max_attempts:
        return RetryDecision(RetryAction.FALLBACK)

    exponent = 2 ** (state.attempt - 1)
    if kind is ErrorKind.RATE_LIMITED:
        delay = min(config.rate_limit_backoff_initial * exponent, config.rate_limit_backoff_max)
    else:
        delay = min(config.transient_backoff_initial * exponent, config.transient_backoff_max)
    return RetryDecision(RetryAction.RETRY, delay)


def build_default_strategies(config: PipelineConfig, transport: HttpTransport) -> List[SubtitleStrategy]:
    """Enabled strategies in chain order: library, watch page, yt-dlp."""
    strategies = []
    if config.enable_yt_api:
        strategies.append(LibraryTranscriptStrategy(transport))
    if config.enable_watch_page:
        strategies.append(WatchPageStrategy(transport))
    if config.enable_ytdlp:
        strategies.append(YtDlpSubtitleStrategy(transport))
    return strategies


class TranscriptService:
    """
    Runs the strategy chain for one video with per-strategy retry and backoff.

    Holds no per-request state: every call builds its own RetryState, so a
    single service can serve concurrent requests.
    """

    def __init__(self, strategies: Optional[Sequence[SubtitleStrategy]] = None,
                 config: Optional[PipelineConfig] = None,
                 transport: Optional[HttpTransport] = None):
        self.config = config or get_pipeline_config()
        self.transport = transport or HttpTransport(
            proxy_url=self.config.proxy_url,
            timeout=self.config.request_timeout,
        )
        if strategies is None:
            strategies = build_default_strategies(self.config, self.transport)
        self.strategies = list(strategies)

        evt("transcript_service_init",
            strategies=",".join(s.name for s in self.strategies) or "none",
            proxy_enabled=bool(self.transport.proxy_url))

    def _max_attempts(self, index: int) -> int:
        if index == 0:
            return self.config.primary_max_attempts
        return self.config.fallback_max_attempts

    def _attempt_once(self, strategy: SubtitleStrategy, state: RetryState, video_id: str,
                      language_code: str, cancel: CancellationToken
                      ) -> Tuple[RawSubtitlePayload, List[TranscriptSegment]]:
        if cancel.cancelled:
            raise TranscriptError(ErrorKind.CANCELLED, "Cancelled before attempt",
                                  signal=f"{strategy.name} attempt {state.attempt}")

        with StageTimer(strategy.name, attempt=state.attempt) as timer:
            try:
                payload = strategy.attempt(video_id, language_code, cancel)
                segments = parse_payload(payload)
            except Exception as e:
                # Every failure leaves here classified; a fired token wins over the cause
                if cancel.cancelled:
                    raise TranscriptError(ErrorKind.CANCELLED, "Cancelled during attempt",
                                          signal=f"{strategy.name} attempt {state.attempt}: {type(e).__name__}") from e
                raise to_transcript_error(e) from e

            if not segments:
                timer.mark("empty")

        return payload, segments

    def _run_strategy(self, strategy: SubtitleStrategy, index: int, video_id: str,
                      language_code: str, cancel: CancellationToken
                      ) -> Tuple[RawSubtitlePayload, List[TranscriptSegment]]:
        """Run one strategy until it succeeds or the retry decision says fall back."""
        max_attempts = self._max_attempts(index)
        state = RetryState()
        decision = [RetryDecision(RetryAction.FALLBACK)]

        def should_retry(retry_state: tenacity.RetryCallState) -> bool:
            if not retry_state.outcome.failed:
                return False
            error = retry_state.outcome.exception()
            if isinstance(error, TranscriptError) and error.kind is ErrorKind.CANCELLED:
                return False

            state.attempt = retry_state.attempt_number
            state.last_error = error
            decision[0] = decide_retry(state, error, max_attempts, self.config)

            evt("retry_decision",
                strategy=strategy.name,
                attempt=state.attempt,
                max_attempts=max_attempts,
                kind=classify_error(error).value,
                outcome=decision[0].action.value,
                delay_s=decision[0].delay,
                detail=str(error)[:200])
            return decision[0].action is RetryAction.RETRY

        def stop(retry_state: tenacity.RetryCallState) -> bool:
            return decision[0].action is not RetryAction.RETRY

        def wait(retry_state: tenacity.RetryCallState) -> float:
            return decision[0].delay

        def sleep(seconds: float) -> None:
            if cancel.wait(seconds):
                raise TranscriptError(ErrorKind.CANCELLED, "Cancelled during backoff",
                                      signal=f"{strategy.name} backoff {seconds:.1f}s")

        attempts = [0]

        def attempt() -> Tuple[RawSubtitlePayload, List[TranscriptSegment]]:
            attempts[0] += 1
            state.attempt = attempts[0]
            return self._attempt_once(strategy, state, video_id, language_code, cancel)

        retrying = tenacity.Retrying(
            retry=should_retry,
            stop=stop,
            wait=wait,
            sleep=sleep,
            before_sleep=lambda rs: logger.info(
                f"{strategy.name} attempt {rs.attempt_number} failed, retrying in {rs.next_action.sleep:.1f}s"),
            reraise=True,
        )
        return retrying(attempt)

    def fetch_transcript(self, video_id: str, language_code: Optional[str] = None,
                         cancel: Optional[CancellationToken] = None) -> Transcript:
        """
        Acquire a transcript, falling back through the strategy chain.

        Raises:
            TranscriptError: classified failure; INVALID_INPUT is raised
                before any network activity.
        """
        if not is_valid_video_id(video_id):
            raise TranscriptError(ErrorKind.INVALID_INPUT, "Invalid YouTube video ID",
                                  signal=f"video_id={str(video_id)[:40]!r}")

        language_code = (language_code or "").strip() or self.config.default_language
        cancel = cancel or CancellationToken()
        start_time = time.monotonic()

        set_request_ctx(video_id=video_id, lang=language_code)
        try:
            return self._run_chain(video_id, language_code, cancel, start_time)
        finally:
            clear_request_ctx()

    def _run_chain(self, video_id: str, language_code: str, cancel: CancellationToken,
                   start_time: float) -> Transcript:
        last_error: Optional[TranscriptError] = None
        first_empty: Optional[Tuple[SubtitleStrategy, RawSubtitlePayload]] = None
        count = len(self.strategies)

        for index, strategy in enumerate(self.strategies):
            is_last = index == count - 1
            try:
                payload, segments = self._run_strategy(strategy, index, video_id, language_code, cancel)
            except TranscriptError as e:
                if e.kind is ErrorKind.CANCELLED:
                    transcript_finished(video_id, "cancelled", _elapsed_ms(start_time),
                                        strategy=strategy.name)
                    raise
                last_error = e
                if not is_last:
                    evt("strategy_fallback",
                        strategy=strategy.name,
                        next_strategy=self.strategies[index + 1].name,
                        kind=e.kind.value,
                        detail=str(e)[:200])
                continue

            if segments or is_last:
                return self._finish(video_id, language_code, strategy, payload, segments, start_time)

            if first_empty is None:
                first_empty = (strategy, payload)
            evt("strategy_fallback",
                strategy=strategy.name,
                next_strategy=self.strategies[index + 1].name,
                kind="empty",
                detail="strategy returned no segments")

        if first_empty is not None:
            # A path that answered "no captions" beats later failures
            strategy, payload = first_empty
            return self._finish(video_id, language_code, strategy, payload, [], start_time)

        error = last_error or TranscriptError(ErrorKind.UNKNOWN, "all strategies exhausted")
        transcript_finished(video_id, "error", _elapsed_ms(start_time),
                            kind=error.kind.value, detail=str(error)[:200])
        raise error

    def _finish(self, video_id: str, language_code: str, strategy: SubtitleStrategy,
                payload: RawSubtitlePayload, segments: List[TranscriptSegment],
                start_time: float) -> Transcript:
        transcript = Transcript(
            video_id=video_id,
            segments=tuple(segments),
            source_language=payload.language_code or language_code,
            source=strategy.name,
        )
        transcript_finished(video_id, "success" if segments else "empty",
                            _elapsed_ms(start_time), source=strategy.name,
                            segment_count=len(segments))
        return transcript


def _elapsed_ms(start_time: float) -> int:
    return int((time.monotonic() - start_time) * 1000)


# Process-wide service built from the environment on first use
_default_service: Optional[TranscriptService] = None


def get_transcript_service() -> TranscriptService:
    global _default_service
    if _default_service is None:
        _default_service = TranscriptService()
    return _default_service


def fetch_transcript(video_id: str, language_code: Optional[str] = None,
                     cancel: Optional[CancellationToken] = None) -> Transcript:
    """Acquire a transcript with the default service."""
    return get_transcript_service().fetch_transcript(video_id, language_code, cancel)
