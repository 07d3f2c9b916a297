#!/usr/bin/env python3
from __future__ import annotations

"""Centralized runtime configuration for line-voicer.

Environment variables (optionally overridden by CLI flags) are read into
frozen dataclasses shared across the package.
"""

import os
from dataclasses import dataclass


DEFAULT_VOICE = "Puck"
DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_DELAY_MS = 2000
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _env_str(name: str, default: str) -> str:
    """Trimmed env value, or `default` when unset."""
    v = os.environ.get(name)
    return default if v is None else str(v).strip()


def _env_int(name: str, default: int) -> int:
    """Integer env value; blank or malformed input yields `default`."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    """True for 1/true/yes/on (any case); `default` when unset."""
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LoggingConfig:
    """Verbosity and heartbeat cadence for `Logger`."""

    level: str
    heartbeat_seconds: int
    debug_events: bool
    include_event_ids: bool

    @staticmethod
    def from_env() -> "LoggingConfig":
        """Read LOG_* variables."""
        return LoggingConfig(
            level=_env_str("LOG_LEVEL", "INFO").upper(),
            heartbeat_seconds=max(1, _env_int("LOG_HEARTBEAT_SECONDS", 15)),
            debug_events=_env_bool("LOG_DEBUG_EVENTS", False),
            include_event_ids=_env_bool("LOG_INCLUDE_EVENT_IDS", True),
        )


@dataclass(frozen=True)
class ConversionConfig:
    """Per-line retry policy and batch fan-out limits."""

    voice: str
    voice_prompt: str
    retry_attempts: int
    retry_delay_ms: int
    max_in_flight: int

    @staticmethod
    def from_env() -> "ConversionConfig":
        """Build conversion config from environment.

        `max_in_flight=0` keeps fan-out unbounded: every line of a batch is
        started at once.
        """
        return ConversionConfig(
            voice=_env_str("TTS_VOICE", DEFAULT_VOICE) or DEFAULT_VOICE,
            voice_prompt=_env_str("TTS_VOICE_PROMPT", ""),
            retry_attempts=max(1, _env_int("TTS_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)),
            retry_delay_ms=max(0, _env_int("TTS_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS)),
            max_in_flight=max(0, _env_int("TTS_MAX_IN_FLIGHT", 0)),
        )


@dataclass(frozen=True)
class GeminiConfig:
    """Transport settings for the Gemini synthesis/rewrite adapter."""

    tts_model: str
    rewrite_model: str
    timeout_seconds: int
    base_url: str

    @staticmethod
    def from_env() -> "GeminiConfig":
        """Build Gemini adapter config from environment."""
        return GeminiConfig(
            tts_model=_env_str("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts") or "gemini-2.5-flash-preview-tts",
            rewrite_model=_env_str("GEMINI_REWRITE_MODEL", "gemini-2.5-flash") or "gemini-2.5-flash",
            timeout_seconds=max(1, _env_int("GEMINI_TIMEOUT_SECONDS", 60)),
            base_url=(_env_str("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL) or DEFAULT_GEMINI_BASE_URL).rstrip("/"),
        )


def resolve_api_key() -> str:
    """Resolve the Gemini API key from the environment."""
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY"):
        value = str(os.environ.get(name, "") or "").strip()
        if value:
            return value
    return ""
