"""Extended Hamming (SECDED) error-correction codec.

A protection strength ``s`` selects ``r = 8 - s`` Hamming parity bits. Each
codeword is ``n = 2**r`` bits long: position 0 holds the overall parity bit,
positions that are powers of two hold the Hamming parity bits and every other
position carries one data bit, so a codeword holds ``k = n - r - 1`` data bits.

    strength  1      2     3     4     5    6
    (n, k)    128,120 64,57 32,26 16,11 8,4  4,1

Every codeword corrects one flipped bit and detects two. The encoded frame is
two identical copies of a small tagged header followed by the packed
codewords; decoding uses the first header copy that verifies.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .bits import bits_to_bytes, bits_to_int, bytes_to_bits, int_to_bits
from .constants import (
    HAMMING_MAGIC,
    HAMMING_PARITY_BASE,
    MAX_STRENGTH,
    MIN_STRENGTH,
    VERSION_MAJOR,
    VERSION_MINOR,
)
from .hashutil import header_tag, tags_equal


# magic[8], ver_major u16, ver_minor u16, strength u8, reserved u8, payload_len u64
_FRAME_HDR_STRUCT = struct.Struct("<8sHHBBQ")
_HDR_TAG_SIZE = 16
FRAME_HEADER_SIZE = _FRAME_HDR_STRUCT.size + _HDR_TAG_SIZE


@dataclass
class HammingDecodeResult:
    """Decoded payload plus per-codeword book-keeping."""

    data: bytes
    blocks: int = 0
    detected: int = 0
    corrected: int = 0
    uncorrectable: int = 0


class HammingCodec:
    correctable_bits = 1

    def __init__(self, strength: int):
        if isinstance(strength, bool) or not isinstance(strength, int):
            raise ValueError(f"protection strength must be an integer, got {strength!r}")
        if not MIN_STRENGTH <= strength <= MAX_STRENGTH:
            raise ValueError(
                f"unsupported protection strength {strength} (expected {MIN_STRENGTH}..{MAX_STRENGTH})"
            )
        self.strength = strength
        self.parity_bits = HAMMING_PARITY_BASE - strength
        self.block_bits = 1 << self.parity_bits
        self.data_bits = self.block_bits - self.parity_bits - 1
        self._data_positions = [p for p in range(3, self.block_bits) if p & (p - 1)]

    @property
    def body_offset(self) -> int:
        """Byte offset of the first codeword in an encoded frame."""
        return 2 * FRAME_HEADER_SIZE

    def encoded_size(self, payload_len: int) -> int:
        blocks = -(-payload_len * 8 // self.data_bits)
        return self.body_offset + -(-blocks * self.block_bits // 8)

    # -------- encode --------

    def encode(self, data: bytes) -> bytes:
        header = self._pack_header(len(data))
        bits = bytes_to_bits(data)
        k = self.data_bits
        n = self.block_bits
        words = [
            int_to_bits(self._encode_block(bits_to_int(bits[start:start + k])), n)
            for start in range(0, len(bits), k)
        ]
        return header + header + bits_to_bytes("".join(words))

    def _encode_block(self, value: int) -> int:
        codeword = 0
        syndrome = 0
        for i, pos in enumerate(self._data_positions):
            if (value >> i) & 1:
                codeword |= 1 << pos
                syndrome ^= pos
        # Parity bit 2**j covers every position with bit j set
        for j in range(self.parity_bits):
            if (syndrome >> j) & 1:
                codeword |= 1 << (1 << j)
        if bin(codeword).count("1") & 1:
            codeword |= 1
        return codeword

    # -------- decode --------

    def decode(self, frame: bytes, correct_errors: bool = False) -> HammingDecodeResult:
        """Strip redundancy from an encoded frame.

        Args:
            frame: Bytes produced by :meth:`encode` with the same strength.
            correct_errors: When True, repair single-bit errors per codeword.
                Otherwise errors are only counted.

        Raises:
            ValueError: If the frame is not a protected frame, was produced with
                a different strength, or is truncated.
        """
        length = self._read_header(frame)
        k = self.data_bits
        n = self.block_bits
        blocks = -(-length * 8 // k)
        body = frame[self.body_offset:]
        if len(body) * 8 < blocks * n:
            raise ValueError(
                f"protected payload truncated: {len(body)} byte(s), expected {-(-blocks * n // 8)}"
            )
        bits = bytes_to_bits(body)
        result = HammingDecodeResult(data=b"", blocks=blocks)
        out = []
        for b in range(blocks):
            codeword = bits_to_int(bits[b * n:(b + 1) * n])
            syndrome = self._syndrome(codeword)
            odd = bin(codeword).count("1") & 1
            if syndrome or odd:
                result.detected += 1
                if not odd:
                    # Even overall parity with a non-zero syndrome: two flips
                    result.uncorrectable += 1
                elif correct_errors:
                    codeword ^= 1 << syndrome
                    result.corrected += 1
            out.append(int_to_bits(self._extract_block(codeword), k))
        result.data = bits_to_bytes("".join(out)[: length * 8])
        return result

    @staticmethod
    def _syndrome(codeword: int) -> int:
        syndrome = 0
        rest = codeword & ~1
        while rest:
            low = rest & -rest
            syndrome ^= low.bit_length() - 1
            rest ^= low
        return syndrome

    def _extract_block(self, codeword: int) -> int:
        value = 0
        for i, pos in enumerate(self._data_positions):
            if (codeword >> pos) & 1:
                value |= 1 << i
        return value

    # -------- frame header --------

    def _pack_header(self, payload_len: int) -> bytes:
        fields = _FRAME_HDR_STRUCT.pack(
            HAMMING_MAGIC, VERSION_MAJOR, VERSION_MINOR, self.strength, 0, payload_len
        )
        return fields + header_tag(HAMMING_MAGIC, fields)

    def _read_header(self, frame: bytes) -> int:
        if len(frame) < self.body_offset:
            raise ValueError("protected frame too short")
        fields = None
        for copy in (0, 1):
            raw = frame[copy * FRAME_HEADER_SIZE:(copy + 1) * FRAME_HEADER_SIZE]
            candidate = raw[:_FRAME_HDR_STRUCT.size]
            if tags_equal(header_tag(HAMMING_MAGIC, candidate), raw[_FRAME_HDR_STRUCT.size:]):
                fields = candidate
                break
        if fields is None:
            if HAMMING_MAGIC not in (frame[:8], frame[FRAME_HEADER_SIZE:FRAME_HEADER_SIZE + 8]):
                raise ValueError("not a protected frame (bad magic)")
            raise ValueError("protected frame header damaged in both copies")
        _magic, vmaj, _vmin, strength, _res, length = _FRAME_HDR_STRUCT.unpack(fields)
        if vmaj != VERSION_MAJOR:
            raise ValueError(f"unsupported protected frame version {vmaj}")
        if strength != self.strength:
            raise ValueError(f"frame was protected with strength {strength}, not {self.strength}")
        return length
