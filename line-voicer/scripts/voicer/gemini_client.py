#!/usr/bin/env python3
from __future__ import annotations

"""Gemini REST adapter for speech synthesis and safe-text rewriting.

The adapter is the collaborator boundary: it turns HTTP/JSON outcomes into
tagged `SynthesisError` / `RewriteError` values so the conversion engine
never has to inspect message text. Retrying is the engine's job; every call
here is a single request.
"""

import asyncio
import json
import re
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import GeminiConfig
from .errors import (
    ERROR_KIND_CONTENT_BLOCKED,
    ERROR_KIND_EMPTY_RESPONSE,
    ERROR_KIND_EMPTY_RESULT,
    ERROR_KIND_TRANSPORT,
    RewriteError,
    SynthesisError,
)
from .logging_utils import Logger


KNOWN_VOICES: List[Dict[str, str]] = [
    {"id": "Puck", "name": "Puck (Male)"},
    {"id": "Charon", "name": "Charon (Male, Deep)"},
    {"id": "Kore", "name": "Kore (Female)"},
    {"id": "Fenrir", "name": "Fenrir (Male)"},
    {"id": "Zephyr", "name": "Zephyr (Female)"},
    {"id": "Leda", "name": "Leda"},
    {"id": "Orus", "name": "Orus"},
    {"id": "Aoede", "name": "Aoede"},
    {"id": "Callirhoe", "name": "Callirhoe"},
    {"id": "Autonoe", "name": "Autonoe"},
    {"id": "Enceladus", "name": "Enceladus"},
    {"id": "Iapetus", "name": "Iapetus"},
    {"id": "Umbriel", "name": "Umbriel"},
    {"id": "Algieba", "name": "Algieba"},
    {"id": "Despina", "name": "Despina"},
    {"id": "Erinome", "name": "Erinome"},
    {"id": "Algenib", "name": "Algenib"},
    {"id": "Rasalgethi", "name": "Rasalgethi"},
    {"id": "Laomedeia", "name": "Laomedeia"},
    {"id": "Achernar", "name": "Achernar"},
    {"id": "Alnilam", "name": "Alnilam"},
    {"id": "Aura", "name": "Aura (Female)"},
    {"id": "Eos", "name": "Eos (Male)"},
]

REWRITE_PROMPT_TEMPLATE = (
    "Rewrite the following text to be neutral and suitable for all audiences, "
    "ensuring it complies with safety policies. Do not add any commentary, "
    "explanation, or quotation marks. Just provide the rewritten text. "
    'Original text: "{text}"'
)

BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}


def _redact_sensitive_text(text: str, *, api_key: str) -> str:
    rendered = str(text or "")
    secret = str(api_key or "").strip()
    if secret:
        rendered = rendered.replace(secret, "***")
    rendered = re.sub(r"(?i)(key=)[^&\s\"']+", r"\1***", rendered)
    return rendered


def _first_candidate_parts(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    return [part for part in (parts or []) if isinstance(part, dict)]


def extract_audio_payload(payload: Dict[str, Any]) -> str:
    """Return the base64 audio of the first candidate part, or ''."""
    parts = _first_candidate_parts(payload)
    if not parts:
        return ""
    inline = parts[0].get("inlineData") or parts[0].get("inline_data") or {}
    if not isinstance(inline, dict):
        return ""
    return str(inline.get("data") or "")


def extract_text(payload: Dict[str, Any]) -> str:
    """Concatenate text parts of the first candidate."""
    return "".join(str(part.get("text", "")) for part in _first_candidate_parts(payload)).strip()


def describe_block(payload: Dict[str, Any]) -> Optional[SynthesisError]:
    """Build a content-blocked error from prompt feedback, if the prompt was blocked."""
    feedback = payload.get("promptFeedback") or {}
    reason = ""
    ratings: List[Any] = []
    if isinstance(feedback, dict):
        reason = str(feedback.get("blockReason") or "").strip()
        ratings = list(feedback.get("safetyRatings") or [])
    if not reason:
        candidates = payload.get("candidates") or []
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            finish = str(candidates[0].get("finishReason") or "").strip().upper()
            if finish in BLOCKED_FINISH_REASONS:
                reason = finish
                ratings = list(candidates[0].get("safetyRatings") or [])
    if not reason:
        return None
    details = ", ".join(
        f"{str(r.get('category', '')).replace('HARM_CATEGORY_', '')}: {r.get('probability', '')}"
        for r in ratings
        if isinstance(r, dict)
    )
    message = f"Content blocked. Reason: {reason}."
    if details:
        message += f" (Details: {details})"
    return SynthesisError(
        message,
        error_kind=ERROR_KIND_CONTENT_BLOCKED,
        reason=reason,
        details=details,
    )


@dataclass
class GeminiClient:
    """Single-shot Gemini requests exposed as awaitables."""

    config: GeminiConfig
    logger: Logger
    requests_made: int = 0

    def _endpoint(self, model: str) -> str:
        return f"{self.config.base_url}/models/{urllib.parse.quote(model, safe='.-_')}:generateContent"

    def _post_json(self, *, model: str, body: Dict[str, Any], api_key: str, stage: str) -> Dict[str, Any]:
        """POST one JSON request; raises `OSError`/`ValueError` subclasses on failure."""
        req = urllib.request.Request(
            self._endpoint(model),
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": api_key,
            },
            method="POST",
        )
        self.requests_made += 1
        started = time.time()
        with urllib.request.urlopen(req, timeout=self.config.timeout_seconds) as resp:
            raw = resp.read().decode("utf-8")
        self.logger.debug(
            "gemini_request_ok",
            stage=stage,
            model=model,
            elapsed_ms=int((time.time() - started) * 1000),
        )
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Gemini response is not a JSON object")
        return payload

    def _transport_message(self, exc: BaseException, *, api_key: str) -> str:
        if isinstance(exc, urllib.error.HTTPError):
            body = ""
            try:
                body = exc.read().decode("utf-8", errors="ignore")
            except Exception:  # noqa: BLE001
                body = ""
            detail = body[:500] if body else str(exc.reason)
            return _redact_sensitive_text(f"HTTP {exc.code}: {detail}", api_key=api_key)
        return _redact_sensitive_text(str(exc) or type(exc).__name__, api_key=api_key)

    def synthesize_sync(self, *, text: str, voice: str, credentials: str) -> str:
        api_key = str(credentials or "").strip()
        if not api_key:
            raise SynthesisError("Gemini API key not provided.", error_kind=ERROR_KIND_TRANSPORT)
        body = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
                },
            },
        }
        try:
            payload = self._post_json(model=self.config.tts_model, body=body, api_key=api_key, stage="tts")
        except (OSError, ValueError) as exc:
            message = self._transport_message(exc, api_key=api_key)
            self.logger.warn("gemini_tts_error", error=message)
            raise SynthesisError(message, error_kind=ERROR_KIND_TRANSPORT) from exc
        audio = extract_audio_payload(payload)
        if audio:
            return audio
        blocked = describe_block(payload)
        if blocked is not None:
            raise blocked
        raise SynthesisError(
            "No audio data received from API. The response may have been empty.",
            error_kind=ERROR_KIND_EMPTY_RESPONSE,
        )

    def rewrite_sync(self, *, text: str, credentials: str) -> str:
        api_key = str(credentials or "").strip()
        if not api_key:
            raise RewriteError("Gemini API key not provided.", error_kind=ERROR_KIND_TRANSPORT)
        body = {"contents": [{"parts": [{"text": REWRITE_PROMPT_TEMPLATE.format(text=text)}]}]}
        try:
            payload = self._post_json(model=self.config.rewrite_model, body=body, api_key=api_key, stage="rewrite")
        except (OSError, ValueError) as exc:
            message = self._transport_message(exc, api_key=api_key)
            self.logger.warn("gemini_rewrite_error", error=message)
            raise RewriteError(f"Failed to rewrite text: {message}", error_kind=ERROR_KIND_TRANSPORT) from exc
        rewritten = extract_text(payload)
        if not rewritten:
            raise RewriteError(
                "The API failed to generate a rewritten version of the text.",
                error_kind=ERROR_KIND_EMPTY_RESULT,
            )
        return rewritten

    async def _run_blocking(self, stage: str, fn: Callable[..., str], **kwargs: Any) -> str:
        """Run one blocking request on its own daemon thread.

        Concurrent calls are bounded only by the caller, never by a pool size.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def settle(result: Optional[str], exc: Optional[BaseException]) -> None:
            if future.cancelled():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(str(result))

        def worker() -> None:
            try:
                result = fn(**kwargs)
            except BaseException as exc:  # noqa: BLE001
                loop.call_soon_threadsafe(settle, None, exc)
            else:
                loop.call_soon_threadsafe(settle, result, None)

        threading.Thread(target=worker, name=f"gemini-{stage}", daemon=True).start()
        return await future

    async def synthesize(self, *, text: str, voice: str, credentials: str) -> str:
        return await self._run_blocking("tts", self.synthesize_sync, text=text, voice=voice, credentials=credentials)

    async def rewrite(self, *, text: str, credentials: str) -> str:
        return await self._run_blocking("rewrite", self.rewrite_sync, text=text, credentials=credentials)
