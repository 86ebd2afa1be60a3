"""Durable write helpers: atomic replace, exclusive create, locked append."""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - Windows fallback
    fcntl = None


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8", mode: int | None = None) -> None:
    """Replace ``path`` with ``content`` in one rename.

    The temporary file lives next to the target so the rename never crosses
    a filesystem. ``mode`` defaults to the existing file's permissions.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None and path.exists():
        mode = path.stat().st_mode & 0o777
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except OSError:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def exclusive_write_bytes(path: bytes, content: bytes, mode: int = 0o600) -> bool:
    """Create ``path`` with ``content`` only if it does not exist yet.

    Returns False when the name is already taken, so callers can use the
    creation itself as the reservation of the name. The data is fsynced
    before returning; a partially written file is removed again.
    """
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    except FileExistsError:
        return False
    try:
        view = memoryview(content)
        while view:
            written = os.write(fd, view)
            view = view[written:]
        os.fsync(fd)
    except OSError:
        os.close(fd)
        os.unlink(path)
        raise
    os.close(fd)
    return True


@contextmanager
def locked(handle: IO[Any]) -> Iterator[None]:
    """Hold an exclusive flock on an open file; a no-op where flock is missing."""
    if fcntl:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
    try:
        yield
    finally:
        if fcntl:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def append_jsonl(path: Path, payload: dict[str, Any]) -> None:
    """Append one JSON record per line; concurrent writers are serialised."""
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, ensure_ascii=False).encode("utf-8") + b"\n"
    with path.open("ab+") as handle, locked(handle):
        end = handle.seek(0, os.SEEK_END)
        if end > 0:
            # a previous writer may have died mid-line
            handle.seek(end - 1)
            if handle.read(1) != b"\n":
                line = b"\n" + line
        handle.write(line)
        handle.flush()
        os.fsync(handle.fileno())
