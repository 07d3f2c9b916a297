#!/usr/bin/env python3
from __future__ import annotations

"""File helpers shared by the parser, the output writer and the CLI."""

import json
import os
from typing import Callable, Dict, Optional, Tuple

# BOM-aware first: subtitle exports frequently carry one.
TEXT_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


def read_text_file_with_fallback(
    path: str,
    *,
    on_fallback: Optional[Callable[[str], None]] = None,
) -> Tuple[str, str]:
    """Read a text input trying each of `TEXT_ENCODINGS` in turn.

    Returns `(content, encoding_used)`.
    """
    last_exc: Exception | None = None
    for enc in TEXT_ENCODINGS:
        try:
            with open(path, "r", encoding=enc) as f:
                data = f.read()
        except UnicodeDecodeError as exc:
            last_exc = exc
            continue
        if enc != TEXT_ENCODINGS[0] and on_fallback is not None:
            on_fallback(enc)
        return data, enc
    raise RuntimeError(f"Failed to decode input file with supported encodings: {last_exc}")


def write_bytes_atomic(path: str, content: bytes) -> str:
    """Write bytes via a temp file + rename so readers never see partial files."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "wb") as f:
        f.write(content)
    os.replace(tmp, path)
    return path


def write_json(path: str, payload: Dict[str, object]) -> str:
    data = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    return write_bytes_atomic(path, data.encode("utf-8"))
