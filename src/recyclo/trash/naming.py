"""Collision-free entry ids inside one trash directory."""

from __future__ import annotations

import hashlib
import os
from typing import Callable, Iterator

from .errors import ResourceExhausted
from .models import INFO_SUFFIX, TrashDirectory

SUFFIX_WIDTH = 8
NAME_MAX = 255


def split_extension(basename: bytes) -> tuple[bytes, bytes]:
    stem, ext = os.path.splitext(basename)
    if not stem:
        return basename, b""
    return stem, ext


class NameAllocator:
    """Picks an id unused by both ``files/`` and ``info/``.

    The first candidate is the original basename. Later candidates append
    ``_`` plus eight lowercase hex digits derived from the basename and the
    attempt number, keeping the extension so that a manually browsed trash
    still shows useful names.
    """

    def __init__(self, max_attempts: int = 100) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts 至少為 1")
        self.max_attempts = max_attempts

    def candidates(self, basename: bytes) -> Iterator[bytes]:
        yield _fit(basename, b"")
        stem, ext = split_extension(basename)
        for attempt in range(1, self.max_attempts):
            digest = hashlib.sha256(basename + b"\x00" + str(attempt).encode("ascii")).hexdigest()
            suffix = b"_" + digest[:SUFFIX_WIDTH].encode("ascii") + ext
            yield _fit(stem, suffix)

    def in_use(self, trash_dir: TrashDirectory, entry_id: str) -> bool:
        return os.path.lexists(trash_dir.files_path(entry_id)) or os.path.lexists(trash_dir.info_path(entry_id))

    def allocate(
        self,
        trash_dir: TrashDirectory,
        basename: bytes,
        claim: Callable[[str], bool] | None = None,
    ) -> str:
        """Return a free id.

        ``claim`` is called with each free candidate and must return True
        once it has reserved the name (typically by creating the sidecar
        exclusively); returning False moves on to the next candidate.
        """
        for raw in self.candidates(basename):
            entry_id = os.fsdecode(raw)
            if self.in_use(trash_dir, entry_id):
                continue
            if claim is None or claim(entry_id):
                return entry_id
        raise ResourceExhausted(
            f"嘗試 {self.max_attempts} 次後仍找不到可用名稱：{os.fsdecode(basename)}",
            path=trash_dir.path,
        )


def _fit(stem: bytes, suffix: bytes) -> bytes:
    # the sidecar name (<id>.trashinfo) must fit in NAME_MAX bytes
    room = NAME_MAX - len(INFO_SUFFIX) - len(suffix)
    if room < 1:
        return stem[:1] + suffix[: NAME_MAX - len(INFO_SUFFIX) - 1]
    if len(stem) > room:
        stem = stem[:room]
    return stem + suffix
