"""File primitives shared by the file-backed stores.

- :func:`file_lock` serializes read-modify-write cycles on a store file
  through an exclusive lock on a sibling ``.lock`` file.
- :func:`write_atomic` replaces a file via temp file + rename, optionally
  keeping a ``.backup`` of the previous content.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from varsync.errors import StateLockError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import IO

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


def lock_path_for(path: Path) -> Path:
    return Path(str(path) + ".lock")


def _flock(handle: IO[str], *, exclusive: bool) -> None:
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_UN)
        return

    if sys.platform == "win32":  # pragma: no cover
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK if exclusive else msvcrt.LK_UNLCK, 1)
        return

    raise StateLockError("File locking is not supported on this platform")


@contextlib.contextmanager
def file_lock(path: Path) -> Iterator[Path]:
    """Hold an exclusive lock for *path* for the duration of the block."""
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # Keep the handle open for the lifetime of the lock.
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        try:
            _flock(handle, exclusive=True)
        except OSError as e:
            raise StateLockError(f"Cannot lock {path}: {e}") from e
        logger.debug("Locked %s", path)
        try:
            yield path
        finally:
            _flock(handle, exclusive=False)
    finally:
        handle.close()


def write_atomic(
    path: Path, content: str, *, backup: bool = False, mode: int | None = None
) -> None:
    """Atomically replace *path* with *content*."""
    path.parent.mkdir(parents=True, exist_ok=True)

    if backup:
        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_file = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None and sys.platform != "win32":
            tmp_file.chmod(mode)
        tmp_file.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_file.unlink()
