#!/usr/bin/env python3
from __future__ import annotations

"""Transport codec for synthesized audio payloads.

The synthesis API delivers raw PCM (mono, 16-bit little endian, 24 kHz) as
base64 text. Decoding is byte-preserving; nothing here interprets samples.
"""

import base64
import binascii
from typing import Union

SAMPLE_RATE = 24000
NUM_CHANNELS = 1
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
BLOCK_ALIGN = NUM_CHANNELS * BYTES_PER_SAMPLE
BYTES_PER_SECOND = SAMPLE_RATE * BLOCK_ALIGN


def decode_payload(payload: Union[str, bytes, bytearray]) -> bytes:
    """Decode a base64 audio payload into raw PCM bytes."""
    if isinstance(payload, str):
        raw = payload.strip().encode("ascii", errors="strict")
    elif isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload).strip()
    else:
        raise TypeError(f"Unsupported audio payload type: {type(payload).__name__}")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Audio payload is not valid base64: {exc}") from exc


def encode_payload(pcm: bytes) -> str:
    """Inverse of `decode_payload`."""
    return base64.b64encode(bytes(pcm)).decode("ascii")
