#!/usr/bin/env python3
from __future__ import annotations

"""Turn `.srt` and `.txt` inputs into ordered line records."""

import os
import re
from typing import Callable, Dict, List, Optional

from .errors import ParseError
from .io_utils import read_text_file_with_fallback
from .models import FileBatch, new_batch

SUPPORTED_EXTENSIONS = ("srt", "txt")

_TAG_RE = re.compile(r"<[^>]*>?")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")


def parse_srt_timestamp(value: str) -> int:
    """`HH:MM:SS,mmm` to milliseconds; anything unparsable counts as 0."""
    parts = value.strip().split(",")
    if len(parts) != 2:
        return 0
    hms = parts[0].split(":")
    if len(hms) != 3:
        return 0
    try:
        h, m, s = (int(p) for p in hms)
        ms = int(parts[1])
    except ValueError:
        return 0
    return (h * 3600 + m * 60 + s) * 1000 + ms


def parse_srt(content: str) -> List[Dict[str, object]]:
    records: List[Dict[str, object]] = []
    normalized = content.replace("\r", "").strip()
    if not normalized:
        return records
    for block in _BLOCK_SPLIT_RE.split(normalized):
        rows = block.strip("\n").split("\n")
        if len(rows) < 2:
            continue
        line_id = rows[0].strip()
        stamps = rows[1].split(" --> ")
        if len(stamps) != 2 or not line_id.isdigit():
            continue
        text = _TAG_RE.sub("", " ".join(rows[2:])).strip()
        if not text:
            continue
        records.append(
            {
                "id": line_id,
                "text": text,
                "start_time_ms": parse_srt_timestamp(stamps[0]),
                "end_time_ms": parse_srt_timestamp(stamps[1]),
            }
        )
    return records


def parse_txt(content: str) -> List[Dict[str, object]]:
    """Parse `id;text` rows, or plain rows numbered `001`, `002`, ...

    The `id;text` form is used only when every non-empty row has both parts.
    """
    rows = [row for row in content.replace("\r", "").strip().split("\n") if row.strip()]
    if not rows:
        return []
    pairs = []
    for row in rows:
        head, sep, tail = row.partition(";")
        # Only the field before a second `;` has to be non-empty.
        if not sep or not head.strip() or not tail.split(";")[0].strip():
            pairs = []
            break
        pairs.append({"id": head.strip(), "text": tail.strip()})
    if pairs:
        return pairs
    return [{"id": str(index).zfill(3), "text": row.strip()} for index, row in enumerate(rows, start=1)]


PARSERS: Dict[str, Callable[[str], List[Dict[str, object]]]] = {
    "srt": parse_srt,
    "txt": parse_txt,
}


def file_extension(path: str) -> str:
    return os.path.splitext(path)[1].lstrip(".").lower()


def load_batch(path: str, *, on_fallback: Optional[Callable[[str], None]] = None) -> FileBatch:
    """Read and parse one input file into a pending batch."""
    name = os.path.basename(path)
    ext = file_extension(path)
    parser = PARSERS.get(ext)
    if parser is None:
        raise ParseError(f"Unsupported file type: .{ext}")
    try:
        content, _ = read_text_file_with_fallback(path, on_fallback=on_fallback)
    except OSError as exc:
        raise ParseError(f"Failed to read the file: {name}") from exc
    records = parser(content)
    if not records:
        raise ParseError("Could not find any text to convert.")
    batch_id = f"{name}-{os.stat(path).st_mtime_ns}"
    try:
        return new_batch(batch_id=batch_id, name=name, records=records)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc
