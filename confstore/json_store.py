from __future__ import annotations

import errno
import logging
import os
import secrets
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_bytes(path: Path) -> bytes:
    """
    Read the raw contents of a store file.

    Missing files raise FileNotFoundError; callers decide what "missing" means.
    """
    with path.open("rb") as f:
        return f.read()


def write_bytes_direct(path: Path, data: bytes, *, mode: int = 0o666) -> None:
    """
    Write in place. Not atomic: a reader may observe a truncated file.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


def atomic_write_bytes(path: Path, data: bytes, *, mode: int = 0o666) -> None:
    """
    Atomically write bytes to disk by writing to a temp file in the same
    directory, then replacing.

    The previous contents stay intact until the replace succeeds.
    """
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def commit_bytes(path: Path, data: bytes, *, mode: int = 0o666, atomic: bool = True) -> None:
    """
    Write `data` to `path`, atomically unless told otherwise.

    A cross-device rename (EXDEV), seen on some Windows setups even within a
    single directory, falls back to a direct write.
    """
    if not atomic:
        write_bytes_direct(path, data, mode=mode)
        return
    try:
        atomic_write_bytes(path, data, mode=mode)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.warning("atomic write to %s crossed devices, writing in place", path)
        write_bytes_direct(path, data, mode=mode)
