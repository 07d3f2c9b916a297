#!/usr/bin/env python3
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SpeechSynthesizer(Protocol):
    """Synthesis collaborator contract.

    Implementations return the base64 PCM payload and raise
    `SynthesisError` tagged `content_blocked`, `empty_response` or
    `transport`. Calls must only suspend the awaiting task.
    """

    async def synthesize(self, *, text: str, voice: str, credentials: str) -> str:
        ...


@runtime_checkable
class TextRewriter(Protocol):
    """Rewrite collaborator contract.

    Implementations return the rewritten text and raise `RewriteError`
    tagged `transport` or `empty_result`.
    """

    async def rewrite(self, *, text: str, credentials: str) -> str:
        ...


def build_request_text(text: str, prompt_prefix: str) -> str:
    """Prepend the optional voice prompt to the text sent for synthesis."""
    prefix = str(prompt_prefix or "")
    if not prefix:
        return text
    return f"{prefix} {text}"
