#!/usr/bin/env python3
from __future__ import annotations

"""Per-line synthesis with bounded retries and a one-shot safe rewrite.

`LineConverter.convert` drives a single line to a terminal state:

- up to `retry_attempts` synthesis calls, spaced by `retry_delay_ms`;
- after the first `content_blocked` failure the working text is rewritten
  once and the next attempt starts immediately;
- every intermediate state is handed to `publish` as a whole Line snapshot.

The terminal Line is also returned so the caller can merge it explicitly.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .config import ConversionConfig
from .errors import (
    ERROR_KIND_CONTENT_BLOCKED,
    ERROR_KIND_EMPTY_RESULT,
    ERROR_KIND_TRANSPORT,
    REWRITE_FAILED_PREFIX,
    RewriteError,
    classify_synthesis_exception,
)
from .logging_utils import Logger
from .models import STATUS_CONVERTING, STATUS_DONE, STATUS_ERROR, Line
from .tts_provider import SpeechSynthesizer, TextRewriter, build_request_text

REWRITE_NOTE = "Content blocked. Attempting to rewrite..."

Publisher = Callable[[Line], None]


def _noop_publish(line: Line) -> None:
    return None


@dataclass
class LineConverter:
    config: ConversionConfig
    logger: Logger
    synthesizer: SpeechSynthesizer
    rewriter: TextRewriter
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    async def _try_rewrite(self, line: Line, text: str, *, credentials: str) -> Optional[str]:
        """Return rewritten text, or None when the rewrite call failed."""
        self.logger.info("line_rewrite_started", line_id=line.id)
        try:
            rewritten = await self.rewriter.rewrite(text=text, credentials=credentials)
        except RewriteError as exc:
            self.logger.warn("line_rewrite_failed", line_id=line.id, error_kind=exc.error_kind, error=str(exc))
            return None
        except Exception as exc:  # noqa: BLE001
            self.logger.warn("line_rewrite_failed", line_id=line.id, error_kind=ERROR_KIND_TRANSPORT, error=str(exc))
            return None
        rewritten = str(rewritten or "").strip()
        if not rewritten:
            self.logger.warn("line_rewrite_failed", line_id=line.id, error_kind=ERROR_KIND_EMPTY_RESULT, error="")
            return None
        return rewritten

    async def convert(
        self,
        line: Line,
        *,
        voice: str,
        prompt_prefix: str = "",
        credentials: str = "",
        publish: Optional[Publisher] = None,
    ) -> Line:
        emit = publish or _noop_publish
        attempts = max(1, int(self.config.retry_attempts))
        delay_seconds = max(0, int(self.config.retry_delay_ms)) / 1000.0

        working_text = line.text
        rewrite_used = False
        current = line.replace(status=STATUS_CONVERTING, error=None, audio_data=None)
        if current != line:
            emit(current)

        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                payload = await self.synthesizer.synthesize(
                    text=build_request_text(working_text, prompt_prefix),
                    voice=voice,
                    credentials=credentials,
                )
            except Exception as exc:  # noqa: BLE001
                kind = classify_synthesis_exception(exc)
                last_error = str(exc) or type(exc).__name__
                self.logger.warn(
                    "line_attempt_failed",
                    line_id=line.id,
                    attempt=attempt,
                    max_attempts=attempts,
                    error_kind=kind,
                    error=last_error,
                )
                if kind == ERROR_KIND_CONTENT_BLOCKED and not rewrite_used:
                    rewrite_used = True
                    current = current.replace(error=REWRITE_NOTE)
                    emit(current)
                    rewritten = await self._try_rewrite(line, working_text, credentials=credentials)
                    if rewritten is not None:
                        working_text = rewritten
                        current = current.replace(text=working_text, error=None)
                        emit(current)
                        continue
                    current = current.replace(error=None)
                    emit(current)
                if attempt < attempts:
                    await self.sleep(delay_seconds)
                continue

            current = current.replace(status=STATUS_DONE, audio_data=payload, text=working_text, error=None)
            emit(current)
            self.logger.info("line_done", line_id=line.id, attempts=attempt, rewritten=working_text != line.text)
            return current

        # A rewrite granted on the last attempt also ends here.
        message = REWRITE_FAILED_PREFIX + last_error if rewrite_used else last_error
        current = current.replace(status=STATUS_ERROR, error=message, text=working_text, audio_data=None)
        emit(current)
        self.logger.error("line_failed", line_id=line.id, attempts=attempts, rewritten=rewrite_used, error=message)
        return current
