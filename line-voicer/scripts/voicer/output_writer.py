#!/usr/bin/env python3
from __future__ import annotations

"""Deliverable files for a converted batch: per-line WAVs, merged WAV, ZIP."""

import os
import zipfile
from typing import List, Optional

from .audio_merger import AudioMerger
from .errors import NoSuccessfulLinesError
from .io_utils import write_bytes_atomic
from .models import FileBatch
from .pcm_codec import decode_payload
from .wav_encoder import encode_wav


def line_wav_name(line_id: str) -> str:
    return f"{line_id}.wav"


def merged_wav_name(batch: FileBatch) -> str:
    suffix = "_timed_merged" if batch.has_timing else "_merged"
    return f"{batch.base_name}{suffix}.wav"


def merge_batch(batch: FileBatch, merger: Optional[AudioMerger] = None) -> bytes:
    """Merged WAV bytes; timed placement when the source carried subtitle timing."""
    merger = merger or AudioMerger()
    pcm = merger.merge_timed(batch) if batch.has_timing else merger.merge_concat(batch)
    return encode_wav(pcm)


def write_line_wavs(batch: FileBatch, out_dir: str) -> List[str]:
    """Write one WAV per successful line; returns the written paths."""
    written: List[str] = []
    for line in batch.lines:
        if not line.has_audio:
            continue
        path = os.path.join(out_dir, line_wav_name(line.id))
        written.append(write_bytes_atomic(path, encode_wav(decode_payload(line.audio_data or ""))))
    return written


def write_merged_wav(batch: FileBatch, out_dir: str, merger: Optional[AudioMerger] = None) -> str:
    path = os.path.join(out_dir, merged_wav_name(batch))
    return write_bytes_atomic(path, merge_batch(batch, merger))


def write_zip_archive(batch: FileBatch, path: str) -> str:
    """ZIP of the successful lines, stored as `<base>/<id>.wav`."""
    lines = [line for line in batch.lines if line.has_audio]
    if not lines:
        raise NoSuccessfulLinesError(batch.name)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = f"{path}.tmp"
    with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for line in lines:
            wav = encode_wav(decode_payload(line.audio_data or ""))
            archive.writestr(f"{batch.base_name}/{line_wav_name(line.id)}", wav)
    os.replace(tmp, path)
    return path
