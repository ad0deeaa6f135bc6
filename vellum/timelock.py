"""Time-gated lock envelopes.

An envelope wraps a payload together with an unlock instant. Before that
instant :meth:`TimeLock.unlock` refuses to return the payload; after it, the
key is re-derived from the instant with Argon2id and the payload is decrypted
with XChaCha20-Poly1305 (PyCryptodomex accepts 24-byte nonces for
``ChaCha20_Poly1305``). The header, including the instant, is bound to the
ciphertext as associated data, so editing the instant breaks authentication.

Payloads that were never time-restricted still get an envelope with the
``ENV_FLAG_TIME_RESTRICTED`` flag clear; their body is the payload followed by
a BLAKE2s tag. Unwrapping therefore parses one format either way.

Every envelope also records which forward layers (compressed/protected) sit
beneath it, so an inverse pipeline can reject a file produced by another mode.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from argon2.exceptions import HashingError
from argon2.low_level import Type as ArgonType, hash_secret_raw
from Cryptodome.Cipher import ChaCha20_Poly1305

from .constants import (
    ARGON_MAX_MEMORY_COST_KIB,
    ARGON_MAX_PARALLELISM,
    ARGON_MAX_TIME_COST,
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
    ARGON_TIME_COST,
    ENV_FLAG_TIME_RESTRICTED,
    ENVELOPE_MAGIC,
    TIMELOCK_KEY_SIZE,
    TIMELOCK_NONCE_SIZE,
    TIMELOCK_SALT_SIZE,
    TIMELOCK_TAG_SIZE,
    VERSION_MAJOR,
    VERSION_MINOR,
)
from .errors import LockedOrMalformed, TimeLocked
from .hashutil import blake2s_16, header_tag, tags_equal


# magic[8], ver_major u16, ver_minor u16, flags u8, content u8, reserved u16,
# unlock_sec i64, unlock_nanos u32, argon_time u32, argon_mem u32, argon_lanes u32,
# salt[16], nonce[24], payload_len u64
_ENV_HDR_STRUCT = struct.Struct("<8sHHBBHqIIII16s24sQ")
_HDR_TAG_SIZE = 16
ENVELOPE_HEADER_SIZE = _ENV_HDR_STRUCT.size + _HDR_TAG_SIZE

_KDF_DOMAIN = b"VELLUM_TIMELOCK\x00"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(instant: datetime) -> datetime:
    # Naive datetimes are taken as local time
    if instant.tzinfo is None:
        return instant.astimezone()
    return instant


def _to_epoch(instant: datetime) -> tuple[int, int]:
    delta = as_aware(instant) - _EPOCH
    sec = delta.days * 86400 + delta.seconds
    return sec, delta.microseconds * 1000


def _from_epoch(sec: int, nanos: int) -> datetime:
    return _EPOCH + timedelta(seconds=sec, microseconds=nanos // 1000)


@dataclass
class EnvelopeInfo:
    version_major: int
    version_minor: int
    time_restricted: bool
    content: int
    unlock_at: Optional[datetime]
    payload_len: int
    time_cost: int
    memory_cost_kib: int
    parallelism: int


@dataclass
class UnlockedPayload:
    data: bytes
    info: EnvelopeInfo


class TimeLock:
    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        *,
        time_cost: int = ARGON_TIME_COST,
        memory_cost_kib: int = ARGON_MEMORY_COST_KIB,
        parallelism: int = ARGON_PARALLELISM,
    ):
        self._clock = clock or _utcnow
        self.time_cost = time_cost
        self.memory_cost_kib = memory_cost_kib
        self.parallelism = parallelism

    def now(self) -> datetime:
        return as_aware(self._clock())

    # -------- wrap --------

    def lock(self, data: bytes, unlock_at: datetime, *, content: int = 0) -> bytes:
        """Wrap ``data`` so it can only be unwrapped at or after ``unlock_at``."""
        sec, nanos = _to_epoch(unlock_at)
        salt = os.urandom(TIMELOCK_SALT_SIZE)
        nonce = os.urandom(TIMELOCK_NONCE_SIZE)
        header = self._pack_header(
            flags=ENV_FLAG_TIME_RESTRICTED,
            content=content,
            unlock_sec=sec,
            unlock_nanos=nanos,
            time_cost=self.time_cost,
            memory_cost_kib=self.memory_cost_kib,
            parallelism=self.parallelism,
            salt=salt,
            nonce=nonce,
            payload_len=len(data),
        )
        key = _derive_key(sec, nanos, salt, self.time_cost, self.memory_cost_kib, self.parallelism)
        cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
        cipher.update(header)
        ciphertext, tag = cipher.encrypt_and_digest(data)
        return header + ciphertext + tag

    def build_unlocked_file(self, data: bytes, *, content: int = 0) -> bytes:
        """Wrap ``data`` in an envelope that is never time-restricted."""
        header = self._pack_header(
            flags=0,
            content=content,
            unlock_sec=0,
            unlock_nanos=0,
            time_cost=0,
            memory_cost_kib=0,
            parallelism=0,
            salt=bytes(TIMELOCK_SALT_SIZE),
            nonce=bytes(TIMELOCK_NONCE_SIZE),
            payload_len=len(data),
        )
        return header + bytes(data) + blake2s_16(header + data)

    # -------- unwrap --------

    def unlock(self, envelope: bytes) -> bytes:
        return self.unwrap(envelope).data

    def unwrap(self, envelope: bytes) -> UnlockedPayload:
        """Return the payload and header details of an envelope.

        Raises:
            TimeLocked: If the unlock instant has not passed yet.
            LockedOrMalformed: If the envelope is unrecognised, damaged or fails
                authentication.
        """
        info, header, body = _parse(envelope)
        payload_len = info.payload_len
        if not info.time_restricted:
            data, tag = body[:payload_len], body[payload_len:]
            if not tags_equal(blake2s_16(header + data), tag):
                raise LockedOrMalformed("envelope payload does not match its tag")
            return UnlockedPayload(data=data, info=info)

        if self.now() < info.unlock_at:
            raise TimeLocked(f"locked until {info.unlock_at.isoformat()}", unlock_at=info.unlock_at)
        if not (
            1 <= info.time_cost <= ARGON_MAX_TIME_COST
            and 1 <= info.parallelism <= ARGON_MAX_PARALLELISM
            and 8 * info.parallelism <= info.memory_cost_kib <= ARGON_MAX_MEMORY_COST_KIB
        ):
            raise LockedOrMalformed("unsupported Argon2 parameters in envelope")
        fields = _ENV_HDR_STRUCT.unpack(header[:_ENV_HDR_STRUCT.size])
        sec, nanos, salt, nonce = fields[6], fields[7], fields[11], fields[12]
        try:
            key = _derive_key(sec, nanos, salt, info.time_cost, info.memory_cost_kib, info.parallelism)
        except ValueError as exc:
            raise LockedOrMalformed(str(exc))
        cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
        cipher.update(header)
        try:
            data = cipher.decrypt_and_verify(body[:payload_len], body[payload_len:])
        except ValueError:
            raise LockedOrMalformed("envelope authentication failed")
        return UnlockedPayload(data=data, info=info)

    def inspect(self, envelope: bytes) -> EnvelopeInfo:
        """Read an envelope header without unwrapping the payload."""
        info, _header, _body = _parse(envelope)
        return info

    @staticmethod
    def _pack_header(**fields) -> bytes:
        raw = _ENV_HDR_STRUCT.pack(
            ENVELOPE_MAGIC,
            VERSION_MAJOR,
            VERSION_MINOR,
            fields["flags"],
            fields["content"],
            0,  # reserved
            fields["unlock_sec"],
            fields["unlock_nanos"],
            fields["time_cost"],
            fields["memory_cost_kib"],
            fields["parallelism"],
            fields["salt"],
            fields["nonce"],
            fields["payload_len"],
        )
        return raw + header_tag(ENVELOPE_MAGIC, raw)


def _derive_key(sec: int, nanos: int, salt: bytes, time_cost: int, memory_cost_kib: int, parallelism: int) -> bytes:
    try:
        return hash_secret_raw(
            _KDF_DOMAIN + struct.pack("<qI", sec, nanos),
            salt,
            time_cost=time_cost,
            memory_cost=memory_cost_kib,
            parallelism=parallelism,
            hash_len=TIMELOCK_KEY_SIZE,
            type=ArgonType.ID,
        )
    except HashingError as exc:
        raise ValueError(f"time lock key derivation failed: {exc}")


def _parse(envelope: bytes) -> tuple[EnvelopeInfo, bytes, bytes]:
    if len(envelope) < ENVELOPE_HEADER_SIZE:
        raise LockedOrMalformed("unrecognized envelope (too short)")
    raw = envelope[:_ENV_HDR_STRUCT.size]
    (
        magic,
        vmaj,
        vmin,
        flags,
        content,
        _res,
        unlock_sec,
        unlock_nanos,
        time_cost,
        memory_cost_kib,
        parallelism,
        _salt,
        _nonce,
        payload_len,
    ) = _ENV_HDR_STRUCT.unpack(raw)
    if magic != ENVELOPE_MAGIC:
        raise LockedOrMalformed("unrecognized envelope (bad magic)")
    if not tags_equal(header_tag(ENVELOPE_MAGIC, raw), envelope[_ENV_HDR_STRUCT.size:ENVELOPE_HEADER_SIZE]):
        raise LockedOrMalformed("envelope header damaged")
    if vmaj != VERSION_MAJOR:
        raise LockedOrMalformed(f"unsupported envelope version {vmaj}")
    body = bytes(envelope[ENVELOPE_HEADER_SIZE:])
    if len(body) != payload_len + TIMELOCK_TAG_SIZE:
        raise LockedOrMalformed(
            f"envelope body length {len(body)} does not match recorded payload length {payload_len}"
        )
    restricted = bool(flags & ENV_FLAG_TIME_RESTRICTED)
    if restricted and unlock_nanos >= 1_000_000_000:
        raise LockedOrMalformed("envelope unlock instant out of range")
    try:
        unlock_at = _from_epoch(unlock_sec, unlock_nanos) if restricted else None
    except OverflowError:
        raise LockedOrMalformed("envelope unlock instant out of range")
    info = EnvelopeInfo(
        version_major=vmaj,
        version_minor=vmin,
        time_restricted=restricted,
        content=content,
        unlock_at=unlock_at,
        payload_len=payload_len,
        time_cost=time_cost,
        memory_cost_kib=memory_cost_kib,
        parallelism=parallelism,
    )
    return info, envelope[:ENVELOPE_HEADER_SIZE], body
