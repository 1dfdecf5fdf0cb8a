#!/usr/bin/env python3
"""
Pipeline configuration for transcript acquisition.

Retry budgets, backoff curves, request timeout, default language, the
enabled strategies and the outbound proxy, all read from the environment.
Out-of-range numbers are clamped, unparsable ones fall back to defaults.
"""

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from logging_setup import get_logger

logger = get_logger(__name__)

Number = Union[int, float]

TRUTHY = frozenset(("1", "true", "yes", "on"))


def _env_number(env_var: str, default: Number, cast: Callable[[str], Number],
                low: Number, high: Number) -> Number:
    raw = os.getenv(env_var)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.error(f"Invalid value for {env_var}: {raw!r}, using default {default}")
        return default

    clamped = min(max(value, low), high)
    if clamped != value:
        logger.warning(f"{env_var}={value} is outside [{low}, {high}], using {clamped}")
    return clamped


@dataclass
class PipelineConfig:
    """Configuration for the transcript acquisition pipeline."""

    # Retry budgets per strategy
    primary_max_attempts: int = 5
    fallback_max_attempts: int = 3

    # delay = min(initial * 2**(attempt-1), max), in seconds
    rate_limit_backoff_initial: float = 3.0
    rate_limit_backoff_max: float = 15.0
    transient_backoff_initial: float = 1.0
    transient_backoff_max: float = 5.0

    request_timeout: float = 15.0
    default_language: str = "en"

    enable_yt_api: bool = True
    enable_watch_page: bool = True
    enable_ytdlp: bool = True

    proxy_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        config = cls(
            primary_max_attempts=_env_number("PRIMARY_MAX_ATTEMPTS", 5, int, 1, 10),
            fallback_max_attempts=_env_number("FALLBACK_MAX_ATTEMPTS", 3, int, 1, 10),
            rate_limit_backoff_initial=_env_number("RATE_LIMIT_BACKOFF_INITIAL", 3.0, float, 0.0, 60.0),
            rate_limit_backoff_max=_env_number("RATE_LIMIT_BACKOFF_MAX", 15.0, float, 0.0, 300.0),
            transient_backoff_initial=_env_number("TRANSIENT_BACKOFF_INITIAL", 1.0, float, 0.0, 60.0),
            transient_backoff_max=_env_number("TRANSIENT_BACKOFF_MAX", 5.0, float, 0.0, 300.0),
            request_timeout=_env_number("REQUEST_TIMEOUT", 15.0, float, 1.0, 120.0),
            default_language=(os.getenv("DEFAULT_LANGUAGE") or "").strip() or "en",
            enable_yt_api=cls._parse_bool_env("ENABLE_YT_API", True),
            enable_watch_page=cls._parse_bool_env("ENABLE_WATCH_PAGE", True),
            enable_ytdlp=cls._parse_bool_env("ENABLE_YTDLP", True),
            proxy_url=os.getenv("TRANSCRIPT_PROXY_URL") or None,
        )
        for problem in config.problems():
            logger.warning(f"Configuration warning: {problem}")
        logger.info("Pipeline configuration loaded: %s", config.to_dict())
        return config

    @staticmethod
    def _parse_bool_env(env_var: str, default: bool) -> bool:
        raw = os.getenv(env_var)
        if raw is None:
            return default
        return raw.strip().lower() in TRUTHY

    def problems(self) -> List[str]:
        """Combinations that load fine but will misbehave at runtime."""
        found = []
        for label, initial, cap in (
            ("RATE_LIMIT_BACKOFF", self.rate_limit_backoff_initial, self.rate_limit_backoff_max),
            ("TRANSIENT_BACKOFF", self.transient_backoff_initial, self.transient_backoff_max),
        ):
            if cap < initial:
                found.append(f"{label}_MAX ({cap}s) is below {label}_INITIAL ({initial}s)")
        if not self.enabled_strategies():
            found.append("All strategies are disabled, every request will fail")
        return found

    def enabled_strategies(self) -> List[str]:
        """Names of enabled strategies in chain order."""
        flags = (
            ("yt_api", self.enable_yt_api),
            ("watch_page", self.enable_watch_page),
            ("ytdlp", self.enable_ytdlp),
        )
        return [name for name, enabled in flags if enabled]

    def to_dict(self) -> Dict[str, Any]:
        """Loggable view; the proxy URL may hold credentials and is reduced to a flag."""
        return {
            "retries": {
                "primary_max_attempts": self.primary_max_attempts,
                "fallback_max_attempts": self.fallback_max_attempts,
            },
            "backoff": {
                "rate_limit_initial": self.rate_limit_backoff_initial,
                "rate_limit_max": self.rate_limit_backoff_max,
                "transient_initial": self.transient_backoff_initial,
                "transient_max": self.transient_backoff_max,
            },
            "request_timeout": self.request_timeout,
            "default_language": self.default_language,
            "strategies": self.enabled_strategies(),
            "proxy_configured": bool(self.proxy_url),
        }


_pipeline_config: Optional[PipelineConfig] = None


def get_pipeline_config() -> PipelineConfig:
    """Process-wide configuration, loaded on first use."""
    global _pipeline_config
    if _pipeline_config is None:
        _pipeline_config = PipelineConfig.from_env()
    return _pipeline_config


def reload_pipeline_config() -> PipelineConfig:
    global _pipeline_config
    _pipeline_config = PipelineConfig.from_env()
    return _pipeline_config
