from __future__ import annotations

import random
from typing import Optional


class Intoxicator:
    """Deliberately damage encoded codewords to exercise error correction.

    Flips ``flips_per_chunk`` distinct bits inside every ``chunk_bits``-sized
    chunk of a buffer, starting at byte ``start``. Bytes before ``start``
    (frame headers) are never touched.
    """

    def __init__(self, flips_per_chunk: int = 1, seed: Optional[int] = None):
        if flips_per_chunk < 0:
            raise ValueError("flips_per_chunk must be non-negative")
        self.flips_per_chunk = flips_per_chunk
        self.seed = seed

    def flip_random_bits_in_chunks(
        self,
        buf: bytearray,
        chunk_bits: int,
        *,
        start: int = 0,
        seed: Optional[int] = None,
    ) -> int:
        """Flip bits in place and return how many were flipped."""
        if chunk_bits <= 0:
            raise ValueError("chunk_bits must be positive")
        rng = random.Random(self.seed if seed is None else seed)
        total_bits = (len(buf) - start) * 8
        if total_bits <= 0 or self.flips_per_chunk == 0:
            return 0
        flips = 0
        for chunk_start in range(0, total_bits, chunk_bits):
            width = min(chunk_bits, total_bits - chunk_start)
            count = min(self.flips_per_chunk, width)
            for offset in rng.sample(range(width), count):
                pos = chunk_start + offset
                buf[start + pos // 8] ^= 1 << (pos % 8)
                flips += 1
        return flips
