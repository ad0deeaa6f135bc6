"""Bit-indexed views of byte buffers.

Bit ``i`` of a buffer is bit ``i % 8`` (least significant first) of byte
``i // 8``. Bit strings use one character per bit, index 0 first, so slicing
a string slices the bit sequence.
"""

from __future__ import annotations


def bytes_to_bits(data: bytes) -> str:
    if not data:
        return ""
    nbits = len(data) * 8
    return format(int.from_bytes(data, "little"), f"0{nbits}b")[::-1]


def bits_to_bytes(bits: str) -> bytes:
    if not bits:
        return b""
    pad = (-len(bits)) % 8
    if pad:
        bits = bits + "0" * pad
    return int(bits[::-1], 2).to_bytes(len(bits) // 8, "little")


def bits_to_int(bits: str) -> int:
    """Value of a bit string whose index 0 is the least significant bit."""
    if not bits:
        return 0
    return int(bits[::-1], 2)


def int_to_bits(value: int, width: int) -> str:
    return format(value, f"0{width}b")[::-1]
