#!/usr/bin/env python3
from __future__ import annotations

"""Error kinds and exception types shared by the conversion core."""

ERROR_KIND_CONTENT_BLOCKED = "content_blocked"
ERROR_KIND_EMPTY_RESPONSE = "empty_response"
ERROR_KIND_TRANSPORT = "transport"
ERROR_KIND_EMPTY_RESULT = "empty_result"
ERROR_KIND_NO_SUCCESSFUL_LINES = "no_successful_lines"

SYNTHESIS_ERROR_KINDS = {
    ERROR_KIND_CONTENT_BLOCKED,
    ERROR_KIND_EMPTY_RESPONSE,
    ERROR_KIND_TRANSPORT,
}
REWRITE_ERROR_KINDS = {
    ERROR_KIND_TRANSPORT,
    ERROR_KIND_EMPTY_RESULT,
}

REWRITE_FAILED_PREFIX = "The rewritten text was also blocked or failed. Last error: "


def _normalize_kind(kind: str, allowed: set[str]) -> str:
    normalized = str(kind or "").strip().lower()
    if normalized not in allowed:
        return ERROR_KIND_TRANSPORT
    return normalized


class SynthesisError(RuntimeError):
    """Speech synthesis failure tagged with its classification."""

    def __init__(
        self,
        message: str,
        *,
        error_kind: str,
        reason: str = "",
        details: str = "",
    ) -> None:
        super().__init__(message)
        self.error_kind = _normalize_kind(error_kind, SYNTHESIS_ERROR_KINDS)
        self.reason = str(reason or "")
        self.details = str(details or "")

    @property
    def is_content_blocked(self) -> bool:
        return self.error_kind == ERROR_KIND_CONTENT_BLOCKED


class RewriteError(RuntimeError):
    """Text rewrite failure tagged with its classification."""

    def __init__(self, message: str, *, error_kind: str) -> None:
        super().__init__(message)
        self.error_kind = _normalize_kind(error_kind, REWRITE_ERROR_KINDS)


class NoSuccessfulLinesError(RuntimeError):
    """Raised by merge/packaging when a batch has no usable audio."""

    error_kind = ERROR_KIND_NO_SUCCESSFUL_LINES

    def __init__(self, batch_name: str, *, timed: bool = False) -> None:
        self.batch_name = batch_name
        self.timed = timed
        suffix = " for this SRT" if timed else ""
        super().__init__(f"No successful audio files to merge{suffix}: {batch_name}")


class ParseError(ValueError):
    """Input file could not be turned into line records."""


def classify_synthesis_exception(exc: BaseException) -> str:
    """Map any collaborator exception to a synthesis error kind.

    Classification relies on the tag set at the collaborator boundary; any
    untagged exception counts as a transport failure.
    """
    if isinstance(exc, SynthesisError):
        return exc.error_kind
    return ERROR_KIND_TRANSPORT
