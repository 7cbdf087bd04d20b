"""Filesystem helpers for secret-bearing files."""

import os
import stat
import tempfile
from pathlib import Path
from typing import Callable, Optional, Union

from gitshift.constants import Mode


def ensure_private_dir(path: Path) -> Path:
    """Create path (and parents) and set it owner-only."""
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, Mode.SECRET_DIR)
    return path


def file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def atomic_write(
    path: Path,
    data: Union[str, bytes],
    mode: int = Mode.SECRET_FILE,
    before_replace: Optional[Callable[[], None]] = None,
) -> None:
    """Write data to path atomically with the given mode.

    The temp file lives in the target directory so the final rename stays on
    one filesystem. It is created 0600 by mkstemp and only then chmod'ed, so
    the content is never readable by others mid-write.

    Args:
        path: Target file.
        data: Text (UTF-8) or bytes.
        mode: Final permission bits.
        before_replace: Called after the temp file is complete and before the
            rename (used to take a backup of the old file).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode("utf-8") if isinstance(data, str) else data

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        if before_replace is not None:
            before_replace()
        os.replace(tmp_path, path)
        try:
            dir_fd = os.open(path.parent, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError:
            pass
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
