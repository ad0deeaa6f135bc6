from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import Optional

from .constants import (
    CODEC_DEFLATE,
    CODEC_NAMES,
    CODEC_NONE,
    CODEC_TAGS,
    CODEC_ZSTD,
    COMPRESSED_MAGIC,
    VERSION_MAJOR,
    VERSION_MINOR,
)
from .hashutil import blake2s_16, tags_equal


# magic[8], ver_major u16, ver_minor u16, codec_id u16, reserved u16,
# original_len u64, original_tag[16]
_RESULT_HDR_STRUCT = struct.Struct("<8sHHHHQ16s")


def codec_id_for(name: str) -> int:
    try:
        return CODEC_NAMES[name]
    except KeyError:
        raise ValueError(f"unknown compression codec: {name!r} (expected one of {sorted(CODEC_NAMES)})")


def codec_tag(codec_id: int) -> str:
    return CODEC_TAGS.get(codec_id, f"c{codec_id}")


def _zstd_module():
    try:
        import zstandard  # type: ignore
    except ImportError:
        raise RuntimeError("zstd codec selected but the 'zstandard' package is not installed (pip install vellum[zstd])")
    return zstandard


@dataclass
class CompressedResult:
    """Self-describing compressed form of a byte buffer."""

    codec_id: int
    original_len: int
    original_tag: bytes
    payload: bytes

    def to_bytes(self) -> bytes:
        return _RESULT_HDR_STRUCT.pack(
            COMPRESSED_MAGIC,
            VERSION_MAJOR,
            VERSION_MINOR,
            self.codec_id,
            0,
            self.original_len,
            self.original_tag,
        ) + self.payload

    @classmethod
    def from_bytes(cls, data: bytes) -> "CompressedResult":
        if len(data) < _RESULT_HDR_STRUCT.size:
            raise ValueError("compressed data too short")
        magic, vmaj, _vmin, codec_id, _res, original_len, tag = _RESULT_HDR_STRUCT.unpack_from(data)
        if magic != COMPRESSED_MAGIC:
            raise ValueError("not compressed data (bad magic)")
        if vmaj != VERSION_MAJOR:
            raise ValueError(f"unsupported compressed data version {vmaj}")
        return cls(
            codec_id=codec_id,
            original_len=original_len,
            original_tag=tag,
            payload=bytes(data[_RESULT_HDR_STRUCT.size:]),
        )


class Codec:
    def __init__(self, codec_id: int = CODEC_DEFLATE, level: Optional[int] = None):
        self.codec_id = codec_id
        self.level = level

    @classmethod
    def from_name(cls, name: str, level: Optional[int] = None) -> "Codec":
        return cls(codec_id_for(name), level)

    def compress(self, data: bytes) -> CompressedResult:
        return CompressedResult(
            codec_id=self.codec_id,
            original_len=len(data),
            original_tag=blake2s_16(data),
            payload=self._compress_raw(self.codec_id, data),
        )

    def decompress(self, result: CompressedResult) -> bytes:
        raw = self._decompress_raw(result.codec_id, result.payload)
        if len(raw) != result.original_len:
            raise ValueError(
                f"decompressed length {len(raw)} does not match recorded length {result.original_len}"
            )
        if not tags_equal(blake2s_16(raw), result.original_tag):
            raise ValueError("decompressed data does not match recorded tag")
        return raw

    def _compress_raw(self, codec_id: int, data: bytes) -> bytes:
        if codec_id == CODEC_NONE:
            return bytes(data)
        if codec_id == CODEC_DEFLATE:
            return zlib.compress(data, self.level if self.level is not None else 6)
        if codec_id == CODEC_ZSTD:
            zstd = _zstd_module()
            try:
                c = zstd.ZstdCompressor(level=self.level if self.level is not None else 3)
                return c.compress(data)
            except zstd.ZstdError as e:
                raise RuntimeError(f"zstd compression failed: {e}")
        # Unknown/unsupported codec: fail fast
        raise RuntimeError(f"unsupported codec id: {codec_id}")

    @staticmethod
    def _decompress_raw(codec_id: int, data: bytes) -> bytes:
        if codec_id == CODEC_NONE:
            return bytes(data)
        if codec_id == CODEC_DEFLATE:
            return zlib.decompress(data)
        if codec_id == CODEC_ZSTD:
            zstd = _zstd_module()
            try:
                d = zstd.ZstdDecompressor()
                return d.decompress(data)
            except zstd.ZstdError as e:
                raise RuntimeError(f"zstd decompression failed: {e}")
        raise RuntimeError(f"unsupported codec id: {codec_id}")
