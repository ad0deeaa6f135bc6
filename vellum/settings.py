from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .constants import DEFAULT_CODEC, DEFAULT_STRENGTH


class OperationMode(Enum):
    PROTECT = "protect"
    UNLOCK = "unlock"
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    PROTECT_AND_COMPRESS = "protect-compress"
    UNLOCK_AND_DECOMPRESS = "unlock-decompress"

    @property
    def is_forward(self) -> bool:
        return self in (OperationMode.PROTECT, OperationMode.COMPRESS, OperationMode.PROTECT_AND_COMPRESS)

    @property
    def inverse(self) -> "OperationMode":
        return _INVERSE_MODES[self]


_INVERSE_MODES = {
    OperationMode.PROTECT: OperationMode.UNLOCK,
    OperationMode.UNLOCK: OperationMode.PROTECT,
    OperationMode.COMPRESS: OperationMode.DECOMPRESS,
    OperationMode.DECOMPRESS: OperationMode.COMPRESS,
    OperationMode.PROTECT_AND_COMPRESS: OperationMode.UNLOCK_AND_DECOMPRESS,
    OperationMode.UNLOCK_AND_DECOMPRESS: OperationMode.PROTECT_AND_COMPRESS,
}


class ProtectionCustomSetting(Enum):
    NONE = "none"
    # Protect path only: flip bits in every codeword after encoding
    ADD_RANDOM_ERROR = "add-random-error"
    # Unlock path only: repair single-bit errors instead of just counting them
    CORRECT_ERRORS = "correct-errors"


@dataclass(frozen=True)
class TimeLockSettings:
    enabled: bool = False
    unlock_at: Optional[datetime] = None


@dataclass(frozen=True)
class RunSettings:
    """Everything one pipeline run needs.

    ``output_path`` is the base path; the run appends ``"." + extension``.
    ``codec``, ``level`` only affect compressing modes; ``seed`` only affects
    ``ADD_RANDOM_ERROR``.
    """

    source_path: str
    output_path: str
    mode: OperationMode
    strength: int = DEFAULT_STRENGTH
    custom_setting: ProtectionCustomSetting = ProtectionCustomSetting.NONE
    time_lock: TimeLockSettings = field(default_factory=TimeLockSettings)
    codec: str = DEFAULT_CODEC
    level: Optional[int] = None
    seed: Optional[int] = None
