"""Minimal CBOR encoder for the structures this authenticator emits.

Only definite-length byte strings, text strings, integers and maps are
supported. There is no decoder.
"""

from __future__ import annotations

from typing import Any, Dict

from .errors import EncodingError

MAJOR_UNSIGNED = 0
MAJOR_NEGATIVE = 1
MAJOR_BYTES = 2
MAJOR_TEXT = 3
MAJOR_MAP = 5

INT_MIN = -(2**31)
INT_MAX = 2**31 - 1
MAX_LENGTH = 0xFFFF


def _header(major: int, argument: int) -> bytes:
    base = major << 5
    if argument < 24:
        return bytes([base | argument])
    if argument < 0x100:
        return bytes([base | 24, argument])
    if argument < 0x10000:
        return bytes([base | 25]) + argument.to_bytes(2, "big")
    return bytes([base | 26]) + argument.to_bytes(4, "big")


def _encode_length(major: int, length: int) -> bytes:
    if length > MAX_LENGTH:
        raise EncodingError(f"CBOR item too long: {length}")
    return _header(major, length)


def _encode_int(value: int) -> bytes:
    if value < INT_MIN or value > INT_MAX:
        raise EncodingError(f"Integer out of supported range: {value}")
    if value >= 0:
        return _header(MAJOR_UNSIGNED, value)
    return _header(MAJOR_NEGATIVE, -1 - value)


def _encode_map(value: Dict[Any, Any]) -> bytes:
    data = bytearray(_encode_length(MAJOR_MAP, len(value)))
    for key, item in value.items():
        data.extend(encode(key))
        data.extend(encode(item))
    return bytes(data)


def encode(value: Any) -> bytes:
    """Encode ``value`` as CBOR, preserving map insertion order."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return _encode_length(MAJOR_BYTES, len(raw)) + raw
    if isinstance(value, str):
        raw = value.encode("utf-8")
        return _encode_length(MAJOR_TEXT, len(raw)) + raw
    # bool is an int subclass but has its own CBOR simple values
    if isinstance(value, bool):
        raise EncodingError("Booleans are not supported")
    if isinstance(value, int):
        return _encode_int(value)
    if isinstance(value, dict):
        return _encode_map(value)
    raise EncodingError(f"Unsupported CBOR type: {type(value).__name__}")
