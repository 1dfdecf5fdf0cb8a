"""
Browser-like request identity shared by every strategy.

YouTube answers clients that do not look like a browser with consent walls
and bot checks. The transport and yt-dlp present the same User-Agent so a
fallback never looks like a different client.
"""

import logging
from typing import Dict, Optional

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
)

BROWSER_MARKERS = ("Mozilla", "AppleWebKit", "Chrome", "Safari", "Firefox", "Edge")
OS_MARKERS = ("Windows", "Macintosh", "Linux", "X11")


class UserAgentManager:
    """Holds the User-Agent and builds the default header set around it."""

    ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    ACCEPT_LANGUAGE = "en-US,en;q=0.9"

    def __init__(self, user_agent: Optional[str] = None):
        if user_agent and not self.looks_like_browser(user_agent):
            logging.warning("Configured User-Agent does not look like a browser, using default")
            user_agent = None
        self.user_agent = user_agent or DEFAULT_USER_AGENT

    def get_user_agent(self) -> str:
        return self.user_agent

    def get_browser_headers(self, overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        User-Agent, Accept and Accept-Language, with `overrides` applied on top.
        """
        headers = {
            'User-Agent': self.user_agent,
            'Accept': self.ACCEPT_HTML,
            'Accept-Language': self.ACCEPT_LANGUAGE,
        }
        headers.update(overrides or {})
        return headers

    @staticmethod
    def looks_like_browser(user_agent: Optional[str]) -> bool:
        """A plausible UA is long and names both a browser engine and an OS."""
        if not user_agent or len(user_agent) < 50:
            return False
        return (any(marker in user_agent for marker in BROWSER_MARKERS)
                and any(marker in user_agent for marker in OS_MARKERS))
