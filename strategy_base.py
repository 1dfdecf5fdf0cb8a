"""
Common interface for transcript source strategies.

A strategy performs one attempt against one upstream source and returns a
raw subtitle payload. Strategies never retry and never fall back; both are
the orchestrator's job.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from models import CancellationToken, RawSubtitlePayload


class SubtitleStrategy(ABC):
    """One upstream source of subtitle payloads."""

    name = "strategy"

    @abstractmethod
    def attempt(self, video_id: str, language_code: str,
                cancel: Optional[CancellationToken] = None) -> RawSubtitlePayload:
        """
        Fetch one raw payload for `video_id` in `language_code`.

        Raises on any failure; the orchestrator classifies the exception.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"


def pick_language(available: Iterable[str], requested: str) -> Optional[str]:
    """
    Pick the track language to use for a request.

    An exact (case-insensitive) match wins; otherwise the first listed
    language that starts with the requested code, so "en" selects "en-US".
    Returns None when nothing matches.
    """
    codes = [code for code in available if code]
    wanted = requested.lower()

    for code in codes:
        if code.lower() == wanted:
            return code

    for code in codes:
        if code.lower().startswith(wanted):
            return code

    return None
