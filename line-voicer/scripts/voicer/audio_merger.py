#!/usr/bin/env python3
from __future__ import annotations

"""Merge the successful lines of a batch into one PCM stream.

Two strategies:

- `merge_concat`: decoded chunks back to back, in line order, no gaps.
- `merge_timed`: chunks placed on a silent canvas at their subtitle start
  offsets. The canvas covers the last end time plus a fixed tail; chunks
  that run past the canvas are cut, and overlapping chunks are resolved by
  letting later lines overwrite earlier ones.
"""

from dataclasses import dataclass, field
from typing import List

from .errors import NoSuccessfulLinesError
from .logging_utils import Logger
from .models import FileBatch, Line
from .pcm_codec import BLOCK_ALIGN, BYTES_PER_SECOND, decode_payload

TIMED_TAIL_MS = 2000


def timed_canvas_size(max_end_ms: int) -> int:
    """Canvas length in bytes for a timeline ending at `max_end_ms`."""
    total_ms = int(max_end_ms) + TIMED_TAIL_MS
    # Integer ceil of total_ms / 1000 * BYTES_PER_SECOND.
    size = -(-total_ms * BYTES_PER_SECOND // 1000)
    if size % BLOCK_ALIGN:
        size += BLOCK_ALIGN - (size % BLOCK_ALIGN)
    return size


def start_offset(start_ms: int) -> int:
    return int(round(start_ms * BYTES_PER_SECOND / 1000))


def _successful_lines(batch: FileBatch) -> List[Line]:
    return [line for line in batch.lines if line.has_audio]


@dataclass
class AudioMerger:
    logger: Logger = field(default_factory=Logger.quiet)

    def merge_concat(self, batch: FileBatch) -> bytes:
        lines = _successful_lines(batch)
        if not lines:
            raise NoSuccessfulLinesError(batch.name)
        return b"".join(decode_payload(line.audio_data or "") for line in lines)

    def merge_timed(self, batch: FileBatch) -> bytes:
        lines = [line for line in _successful_lines(batch) if line.end_time_ms is not None]
        if not lines:
            raise NoSuccessfulLinesError(batch.name, timed=True)

        canvas_size = timed_canvas_size(max(int(line.end_time_ms or 0) for line in lines))
        canvas = bytearray(canvas_size)
        for line in lines:
            if line.start_time_ms is None:
                self.logger.warn("timed_merge_line_skipped", batch=batch.name, line_id=line.id)
                continue
            chunk = decode_payload(line.audio_data or "")
            offset = start_offset(line.start_time_ms)
            if offset >= canvas_size:
                self.logger.warn(
                    "timed_merge_truncated",
                    batch=batch.name,
                    line_id=line.id,
                    offset=offset,
                    dropped_bytes=len(chunk),
                )
                continue
            room = canvas_size - offset
            if len(chunk) > room:
                self.logger.warn(
                    "timed_merge_truncated",
                    batch=batch.name,
                    line_id=line.id,
                    offset=offset,
                    dropped_bytes=len(chunk) - room,
                )
                chunk = chunk[:room]
            canvas[offset:offset + len(chunk)] = chunk
        return bytes(canvas)


def merge_concat(batch: FileBatch) -> bytes:
    return AudioMerger().merge_concat(batch)


def merge_timed(batch: FileBatch) -> bytes:
    return AudioMerger().merge_timed(batch)
