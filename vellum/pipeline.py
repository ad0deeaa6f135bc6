"""Pipeline orchestrator.

One run reads the whole source file, threads the buffer through the ordered
steps that :data:`COMPOSITIONS` lists for the requested mode and writes the
result once, atomically, to ``output_path + "." + extension``. Each step hands
a fresh ``bytes`` object to the next one; nothing is shared between runs.

Every inverse composition is the mirror image of its forward composition:

    PROTECT                protect -> time-lock
    UNLOCK                 time-unlock -> unprotect
    COMPRESS               compress -> time-lock
    DECOMPRESS             time-unlock -> decompress
    PROTECT_AND_COMPRESS   compress -> protect -> time-lock
    UNLOCK_AND_DECOMPRESS  time-unlock -> unprotect -> decompress

Collaborators (error-correction codec, compression codec, time lock,
fault-injection hook and the filesystem boundary) are passed in, so tests can
substitute fakes for any of them.
"""

from __future__ import annotations

import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .codec import Codec, CompressedResult
from .constants import LAYER_COMPRESSED, LAYER_PROTECTED
from .errors import (
    CompressionFailure,
    DecompressionFailure,
    InvalidConfiguration,
    MissingUnlockInstant,
    ModeMismatch,
    ProtectionFailure,
    VellumError,
)
from .extension import build_output_path
from .fileio import read_file, write_file_atomic
from .hamming import HammingCodec
from .intoxicator import Intoxicator
from .settings import OperationMode, ProtectionCustomSetting, RunSettings
from .timelock import TimeLock, as_aware


class Step(Enum):
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    PROTECT = "protect"
    UNPROTECT = "unprotect"
    LOCK = "time-lock"
    UNLOCK = "time-unlock"


COMPOSITIONS: Dict[OperationMode, Tuple[Step, ...]] = {
    OperationMode.PROTECT: (Step.PROTECT, Step.LOCK),
    OperationMode.UNLOCK: (Step.UNLOCK, Step.UNPROTECT),
    OperationMode.COMPRESS: (Step.COMPRESS, Step.LOCK),
    OperationMode.DECOMPRESS: (Step.UNLOCK, Step.DECOMPRESS),
    OperationMode.PROTECT_AND_COMPRESS: (Step.COMPRESS, Step.PROTECT, Step.LOCK),
    OperationMode.UNLOCK_AND_DECOMPRESS: (Step.UNLOCK, Step.UNPROTECT, Step.DECOMPRESS),
}

_CONTENT_PRODUCERS: Dict[int, OperationMode] = {
    LAYER_PROTECTED: OperationMode.PROTECT,
    LAYER_COMPRESSED: OperationMode.COMPRESS,
    LAYER_COMPRESSED | LAYER_PROTECTED: OperationMode.PROTECT_AND_COMPRESS,
}


def producer_of(content: int) -> Optional[OperationMode]:
    """Forward mode that writes envelopes with this content tag, if any."""
    return _CONTENT_PRODUCERS.get(content)


def content_layers(mode: OperationMode) -> int:
    """Layers that sit under the time lock for files made or read by ``mode``."""
    forward = mode if mode.is_forward else mode.inverse
    steps = COMPOSITIONS[forward]
    layers = 0
    if Step.COMPRESS in steps:
        layers |= LAYER_COMPRESSED
    if Step.PROTECT in steps:
        layers |= LAYER_PROTECTED
    return layers


@dataclass
class RunReport:
    mode: OperationMode
    source_path: str
    output_path: str
    input_size: int
    output_size: int
    elapsed_ms: float
    steps: Tuple[Step, ...]
    warnings: List[str] = field(default_factory=list)
    detected_blocks: int = 0
    corrected_blocks: int = 0
    uncorrectable_blocks: int = 0
    injected_bits: int = 0
    unlock_at: Optional[datetime] = None


@dataclass
class RunOutcome:
    """Either a report or the error that ended the run."""

    report: Optional[RunReport] = None
    error: Optional[VellumError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _RunState:
    """Per-run book-keeping shared by the steps of one run only."""

    def __init__(self, settings: RunSettings):
        self.settings = settings
        self.warnings: List[str] = []
        self.detected = 0
        self.corrected = 0
        self.uncorrectable = 0
        self.injected = 0
        self.unlock_at: Optional[datetime] = None


class Pipeline:
    def __init__(
        self,
        *,
        ecc_factory: Callable[[int], HammingCodec] = HammingCodec,
        codec_factory: Callable[[str, Optional[int]], Codec] = Codec.from_name,
        time_lock: Optional[TimeLock] = None,
        intoxicator: Optional[Intoxicator] = None,
        reader: Callable[[str], bytes] = read_file,
        writer: Callable[[str, bytes], None] = write_file_atomic,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self._ecc_factory = ecc_factory
        self._codec_factory = codec_factory
        self._time_lock = time_lock if time_lock is not None else TimeLock()
        self._intoxicator = intoxicator if intoxicator is not None else Intoxicator()
        self._read = reader
        self._write = writer
        self._timer = timer
        self._steps: Dict[Step, Callable[[bytes, _RunState], bytes]] = {
            Step.COMPRESS: self._compress,
            Step.DECOMPRESS: self._decompress,
            Step.PROTECT: self._protect,
            Step.UNPROTECT: self._unprotect,
            Step.LOCK: self._lock,
            Step.UNLOCK: self._unlock,
        }

    def run(self, settings: RunSettings) -> RunReport:
        """Execute one run and return its report.

        Raises:
            VellumError: Any taxonomy error; the destination file is then left
                as it was before the run.
        """
        validate(settings)
        output_path = build_output_path(settings)
        steps = COMPOSITIONS[settings.mode]
        state = _RunState(settings)

        started = self._timer()
        data = self._read(settings.source_path)
        input_size = len(data)
        for step in steps:
            data = self._steps[step](data, state)
        self._write(output_path, data)
        elapsed_ms = (self._timer() - started) * 1000.0

        return RunReport(
            mode=settings.mode,
            source_path=settings.source_path,
            output_path=output_path,
            input_size=input_size,
            output_size=len(data),
            elapsed_ms=elapsed_ms,
            steps=steps,
            warnings=state.warnings,
            detected_blocks=state.detected,
            corrected_blocks=state.corrected,
            uncorrectable_blocks=state.uncorrectable,
            injected_bits=state.injected,
            unlock_at=state.unlock_at,
        )

    def attempt(self, settings: RunSettings) -> RunOutcome:
        """Like :meth:`run`, but taxonomy errors are returned instead of raised."""
        try:
            return RunOutcome(report=self.run(settings))
        except VellumError as exc:
            return RunOutcome(error=exc)

    # -------- steps --------

    def _compress(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        try:
            codec = self._codec_factory(settings.codec, settings.level)
            return codec.compress(data).to_bytes()
        except (ValueError, RuntimeError, zlib.error) as exc:
            raise CompressionFailure(f"Failed to compress data: {exc}") from exc

    def _decompress(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        try:
            result = CompressedResult.from_bytes(data)
            codec = self._codec_factory(settings.codec, settings.level)
            return codec.decompress(result)
        except (ValueError, RuntimeError, zlib.error) as exc:
            raise DecompressionFailure(f"Failed to decompress data: {exc}") from exc

    def _protect(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        try:
            codec = self._ecc_factory(settings.strength)
            encoded = codec.encode(data)
        except ValueError as exc:
            raise ProtectionFailure(f"Failed to protect data: {exc}") from exc
        if settings.custom_setting is not ProtectionCustomSetting.ADD_RANDOM_ERROR:
            return encoded

        damaged = bytearray(encoded)
        state.injected = self._intoxicator.flip_random_bits_in_chunks(
            damaged, codec.block_bits, start=codec.body_offset, seed=settings.seed
        )
        if self._intoxicator.flips_per_chunk > codec.correctable_bits:
            state.warnings.append(
                f"injected {self._intoxicator.flips_per_chunk} bit error(s) per codeword but strength "
                f"{settings.strength} corrects only {codec.correctable_bits}; unlocking this file is expected to be lossy"
            )
        return bytes(damaged)

    def _unprotect(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        correct = settings.custom_setting is ProtectionCustomSetting.CORRECT_ERRORS
        try:
            codec = self._ecc_factory(settings.strength)
            result = codec.decode(data, correct_errors=correct)
        except ValueError as exc:
            raise ProtectionFailure(f"Failed to unlock protected data: {exc}") from exc
        state.detected = result.detected
        state.corrected = result.corrected
        state.uncorrectable = result.uncorrectable
        uncorrected = result.detected - result.corrected - result.uncorrectable
        if uncorrected:
            state.warnings.append(
                f"{uncorrected} codeword(s) hold correctable errors that were left in place; "
                "rerun with error correction enabled"
            )
        if result.uncorrectable:
            state.warnings.append(
                f"{result.uncorrectable} codeword(s) hold more errors than strength "
                f"{settings.strength} can correct; output is damaged"
            )
        return result.data

    def _lock(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        lock = settings.time_lock
        content = content_layers(settings.mode)
        if not lock.enabled:
            return self._time_lock.build_unlocked_file(data, content=content)
        if lock.unlock_at is None:
            raise MissingUnlockInstant("A lock date must be specified when the time lock is enabled.")
        try:
            unlock_at = as_aware(lock.unlock_at)
        except (ValueError, OverflowError, OSError) as exc:
            raise InvalidConfiguration(f"Invalid unlock instant {lock.unlock_at!r}: {exc}") from exc
        try:
            envelope = self._time_lock.lock(data, unlock_at, content=content)
        except ValueError as exc:
            raise InvalidConfiguration(f"Failed to time-lock data: {exc}") from exc
        if self._time_lock.now() >= unlock_at:
            state.warnings.append(
                f"unlock instant {lock.unlock_at.isoformat()} has already passed; the file is not time restricted"
            )
        state.unlock_at = lock.unlock_at
        return envelope

    def _unlock(self, data: bytes, state: _RunState) -> bytes:
        settings = state.settings
        unwrapped = self._time_lock.unwrap(data)
        expected = content_layers(settings.mode)
        found = unwrapped.info.content
        if found != expected:
            producer = producer_of(found)
            if producer is None:
                raise ModeMismatch(f"File holds unrecognised content (tag {found}); it was not made by vellum")
            raise ModeMismatch(
                f"File was produced by '{producer.value}', so '{settings.mode.value}' cannot read it; "
                f"use '{producer.inverse.value}' instead"
            )
        state.unlock_at = unwrapped.info.unlock_at
        return unwrapped.data


def validate(settings: RunSettings) -> None:
    """Reject unusable settings before any file is touched."""
    if not settings.source_path or not settings.source_path.strip():
        raise InvalidConfiguration("Invalid Source Path")
    if not settings.output_path or not settings.output_path.strip():
        raise InvalidConfiguration("Invalid Output Path")
    lock = settings.time_lock
    if Step.LOCK in COMPOSITIONS[settings.mode] and lock.enabled and lock.unlock_at is None:
        raise MissingUnlockInstant("A lock date must be specified when the time lock is enabled.")


def run(settings: RunSettings) -> RunReport:
    """Run ``settings`` with the default collaborators."""
    return Pipeline().run(settings)
