#!/usr/bin/env python3
from __future__ import annotations

"""Wrap raw PCM in a canonical 44-byte RIFF/WAVE header."""

import struct

from .pcm_codec import BITS_PER_SAMPLE, BLOCK_ALIGN, NUM_CHANNELS, SAMPLE_RATE

WAV_HEADER_SIZE = 44
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def encode_wav(pcm: bytes) -> bytes:
    """Return WAV container bytes for mono 16-bit 24 kHz PCM."""
    data = bytes(pcm)
    data_size = len(data)
    header = _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        NUM_CHANNELS,
        SAMPLE_RATE,
        SAMPLE_RATE * BLOCK_ALIGN,
        BLOCK_ALIGN,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return header + data


def read_wav_data(wav: bytes) -> bytes:
    """Return the data sub-chunk of a WAV produced by `encode_wav`.

    Only the fixed layout written above is accepted.
    """
    if len(wav) < WAV_HEADER_SIZE:
        raise ValueError("WAV payload shorter than header")
    fields = _HEADER.unpack(wav[:WAV_HEADER_SIZE])
    if fields[0] != b"RIFF" or fields[2] != b"WAVE" or fields[3] != b"fmt " or fields[11] != b"data":
        raise ValueError("Not a canonical PCM WAV payload")
    data_size = int(fields[12])
    data = wav[WAV_HEADER_SIZE:WAV_HEADER_SIZE + data_size]
    if len(data) != data_size:
        raise ValueError("WAV data chunk is truncated")
    return data
