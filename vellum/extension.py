from __future__ import annotations

from .constants import CODEC_NAMES, CODEC_TAGS
from .settings import OperationMode, ProtectionCustomSetting, RunSettings


LOCK_TAG = "-tl"
# Decompression follows the codec recorded in the container, not the settings
UNCOMPRESS_TAG = "unc"


def _codec_tag(name: str) -> str:
    codec_id = CODEC_NAMES.get(name)
    return CODEC_TAGS.get(codec_id, name) if codec_id is not None else name


def build_extension(settings: RunSettings) -> str:
    """Map a run's mode and sub-settings to an output file suffix (no leading dot).

    The suffix names the transforms that were applied, for example ``ham3``
    (protected at strength 3), ``dflham3e-tl`` (deflated, protected with
    injected errors, time locked) or ``unc`` (decompressed).
    """
    mode = settings.mode
    custom = settings.custom_setting
    ham = f"ham{settings.strength}"
    codec = _codec_tag(settings.codec)

    if mode is OperationMode.PROTECT:
        suffix = ham + ("e" if custom is ProtectionCustomSetting.ADD_RANDOM_ERROR else "")
    elif mode is OperationMode.UNLOCK:
        suffix = "un" + ham + ("c" if custom is ProtectionCustomSetting.CORRECT_ERRORS else "")
    elif mode is OperationMode.COMPRESS:
        suffix = codec
    elif mode is OperationMode.DECOMPRESS:
        suffix = UNCOMPRESS_TAG
    elif mode is OperationMode.PROTECT_AND_COMPRESS:
        suffix = codec + ham + ("e" if custom is ProtectionCustomSetting.ADD_RANDOM_ERROR else "")
    else:
        suffix = UNCOMPRESS_TAG + ham + ("c" if custom is ProtectionCustomSetting.CORRECT_ERRORS else "")

    if mode.is_forward and settings.time_lock.enabled:
        suffix += LOCK_TAG
    return suffix


def build_output_path(settings: RunSettings) -> str:
    return settings.output_path + "." + build_extension(settings)
