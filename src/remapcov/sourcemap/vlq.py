"""Base64 VLQ decoding for the ``mappings`` field of version 3 source maps."""

from __future__ import annotations

from typing import Dict, List

__all__ = ["VLQDecodeError", "decode_segment"]

_BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_INDEX: Dict[str, int] = {char: index for index, char in enumerate(_BASE64_ALPHABET)}

_CONTINUATION_BIT = 0b100000
_VALUE_MASK = 0b011111
_SHIFT = 5


class VLQDecodeError(ValueError):
    """Raised when a mapping segment is not valid base64 VLQ."""


def decode_segment(segment: str) -> List[int]:
    """Decode one comma-delimited ``mappings`` segment into its signed fields."""

    values: List[int] = []
    value = 0
    shift = 0
    for char in segment:
        digit = _BASE64_INDEX.get(char)
        if digit is None:
            raise VLQDecodeError(f"Invalid base64 VLQ character {char!r} in segment {segment!r}")
        value += (digit & _VALUE_MASK) << shift
        if digit & _CONTINUATION_BIT:
            shift += _SHIFT
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = 0
        shift = 0

    if shift:
        raise VLQDecodeError(f"Truncated base64 VLQ value in segment {segment!r}")
    return values
