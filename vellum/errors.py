from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    INVALID_CONFIGURATION = "invalid-configuration"
    MISSING_UNLOCK_INSTANT = "missing-unlock-instant"
    IO_FAILURE = "io-failure"
    COMPRESSION_FAILURE = "compression-failure"
    DECOMPRESSION_FAILURE = "decompression-failure"
    PROTECTION_FAILURE = "protection-failure"
    LOCKED_OR_MALFORMED = "locked-or-malformed"
    MODE_MISMATCH = "mode-mismatch"


class VellumError(Exception):
    """Base class for Vellum-specific errors."""

    kind = ErrorKind.INVALID_CONFIGURATION


# Configuration
class InvalidConfiguration(VellumError):
    kind = ErrorKind.INVALID_CONFIGURATION


class MissingUnlockInstant(InvalidConfiguration):
    kind = ErrorKind.MISSING_UNLOCK_INSTANT


# Filesystem boundary
class IOFailure(VellumError):
    kind = ErrorKind.IO_FAILURE

    READ = "read"
    WRITE = "write"

    def __init__(self, phase: str, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.phase = phase
        self.path = path


# Transform stages
class CompressionFailure(VellumError):
    kind = ErrorKind.COMPRESSION_FAILURE


class DecompressionFailure(VellumError):
    kind = ErrorKind.DECOMPRESSION_FAILURE


class ProtectionFailure(VellumError):
    kind = ErrorKind.PROTECTION_FAILURE


class LockedOrMalformed(VellumError):
    kind = ErrorKind.LOCKED_OR_MALFORMED


class TimeLocked(LockedOrMalformed):
    """Raised when an envelope is unwrapped before its unlock instant."""

    def __init__(self, message: str, unlock_at=None):
        super().__init__(message)
        self.unlock_at = unlock_at


class ModeMismatch(VellumError):
    kind = ErrorKind.MODE_MISMATCH
