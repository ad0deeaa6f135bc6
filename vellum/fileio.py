from __future__ import annotations

import os
import tempfile

from .errors import IOFailure


def read_file(path: str) -> bytes:
    """Read a whole file; any failure is reported as a read-phase IOFailure."""
    try:
        with open(path, "rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            data = fh.read()
    except OSError as exc:
        raise IOFailure(IOFailure.READ, f"Failed to read file: {exc}", path) from exc
    if len(data) < size:
        raise IOFailure(IOFailure.READ, f"Failed to read file: short read ({len(data)} of {size} bytes)", path)
    return data


def _current_umask() -> int:
    # os.umask only reads the mask by setting it
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_file_atomic(path: str, data: bytes) -> None:
    """Replace ``path`` with ``data`` via a temporary sibling and an atomic rename.

    Either the destination ends up holding exactly ``data`` or it is left as it
    was; the temporary file is removed on failure. A new destination gets the
    permissions a plain ``open`` would give it under the current umask.
    """
    directory = os.path.dirname(os.path.abspath(path))
    try:
        mode = os.stat(path).st_mode & 0o777
    except FileNotFoundError:
        mode = 0o666 & ~_current_umask()
    except OSError as exc:
        raise IOFailure(IOFailure.WRITE, f"Failed to write file: {exc}", path) from exc
    try:
        fd, temp_path = tempfile.mkstemp(
            prefix="." + os.path.basename(path) + ".", suffix=".tmp", dir=directory
        )
    except OSError as exc:
        raise IOFailure(IOFailure.WRITE, f"Failed to write file: {exc}", path) from exc
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError as exc:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise IOFailure(IOFailure.WRITE, f"Failed to write file: {exc}", path) from exc
