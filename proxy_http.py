import logging
import time
from typing import Dict, Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qs

import requests
from requests.adapters import HTTPAdapter

from user_agent_manager import UserAgentManager

# Only these headers may be overridden per request
_OVERRIDABLE_HEADERS = ('User-Agent', 'Accept', 'Referer', 'Origin')

_SENSITIVE_PARAMS = {'key', 'token', 'auth', 'session', 'sig', 'signature', 'lsig', 'pot'}


def mask_url_for_logging(url: str) -> str:
    """Mask sensitive query parameters in URLs for logging."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        params = parse_qs(parsed.query, keep_blank_values=True)
        masked_params = {
            key: ['***MASKED***'] * len(values) if key.lower() in _SENSITIVE_PARAMS else values
            for key, values in params.items()
        }
        masked_query = urlencode(masked_params, doseq=True)
        return urlunparse(parsed._replace(query=masked_query))
    except ValueError:
        return f"{url.split('?')[0]}?***MASKED_QUERY***" if '?' in url else url


def mask_proxy_url(proxy_url: str) -> str:
    parsed = urlparse(proxy_url)
    if parsed.password:
        netloc = f"{parsed.username}:***@{parsed.hostname}"
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        return urlunparse(parsed._replace(netloc=netloc))
    return proxy_url


class HttpTransport:
    """
    Shared HTTP client for all strategies.

    Holds one long-lived requests.Session with browser-like headers and an
    optional proxy. The adapter performs no retries of its own: retry
    policy belongs to the orchestrator. Configuration is read-only after
    construction so one transport can serve concurrent acquisitions.
    """

    def __init__(self, proxy_url: Optional[str] = None, user_agent: Optional[str] = None,
                 timeout: float = 15):
        self._proxy_url = proxy_url or None
        self.timeout = timeout
        self.user_agents = UserAgentManager(user_agent)

        self.session = requests.Session()
        adapter = HTTPAdapter(max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update(self.user_agents.get_browser_headers())

        if self._proxy_url:
            self.session.proxies.update(self.proxy_dict)
            logging.info(f"HttpTransport using proxy {mask_proxy_url(self._proxy_url)}")

    @property
    def proxy_url(self) -> Optional[str]:
        return self._proxy_url

    @property
    def proxy_dict(self) -> Optional[Dict[str, str]]:
        if not self._proxy_url:
            return None
        return {"http": self._proxy_url, "https": self._proxy_url}

    @property
    def user_agent(self) -> str:
        return self.user_agents.get_user_agent()

    def bounded_timeout(self, cancel=None) -> float:
        """Request timeout, shortened to what remains on the cancellation deadline."""
        if cancel is None:
            return self.timeout
        remaining = cancel.remaining()
        if remaining is None:
            return self.timeout
        # requests rejects a zero timeout
        return max(0.1, min(self.timeout, remaining))

    def get(self, url: str, headers: Optional[Dict[str, str]] = None,
            timeout: Optional[float] = None) -> requests.Response:
        """
        GET with optional per-request header overrides.

        Raises requests exceptions unchanged; status codes are left to the caller.
        """
        request_headers = {}
        for name, value in (headers or {}).items():
            if name in _OVERRIDABLE_HEADERS:
                request_headers[name] = value
            else:
                logging.debug(f"Ignoring non-overridable header {name}")

        start_time = time.monotonic()
        try:
            response = self.session.get(url, headers=request_headers,
                                        timeout=timeout or self.timeout)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            latency_ms = int((time.monotonic() - start_time) * 1000)
            logging.warning(f"Request timeout/connection error: url={mask_url_for_logging(url)}, "
                            f"error={e}, latency_ms={latency_ms}")
            raise

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logging.debug(f"GET {mask_url_for_logging(url)} status={response.status_code} "
                      f"bytes={len(response.content)} latency_ms={latency_ms}")
        return response

    def close(self):
        """Close the HTTP session"""
        self.session.close()
