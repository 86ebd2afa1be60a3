"""Trash error definitions."""

from __future__ import annotations

import os
from typing import Sequence


class TrashError(RuntimeError):
    """Base class for trash errors.

    ``path`` is the raw filesystem path involved (bytes) and ``entry_id`` the
    trash entry id, whichever applies.
    """

    def __init__(self, message: str, *, path: bytes | None = None, entry_id: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.entry_id = entry_id

    @property
    def display_path(self) -> str | None:
        return os.fsdecode(self.path) if self.path is not None else None


class DirectoryUnavailable(TrashError):
    """Raised when no usable trash directory can be found or created."""


class MalformedEntry(TrashError):
    """Raised when a sidecar or an encoded path cannot be parsed."""


class Collision(TrashError):
    """Raised when the restore destination is already occupied."""


class DestinationMissing(TrashError):
    """Raised when the parent directory of the restore destination is gone."""


class ResourceExhausted(TrashError):
    """Raised when no free entry id is found within the retry limit."""


class Ambiguous(TrashError):
    """Raised when a lookup key matches more than one entry."""

    def __init__(
        self,
        message: str,
        *,
        candidates: Sequence[str] = (),
        path: bytes | None = None,
        entry_id: str | None = None,
    ) -> None:
        super().__init__(message, path=path, entry_id=entry_id)
        self.candidates = list(candidates)


class EntryNotFound(TrashError):
    """Raised when no entry matches the given id or path."""


class OrphanedEntry(TrashError):
    """Raised when an operation needs both halves of an entry but one is missing."""


class RefusedPath(TrashError):
    """Raised when a path must not be trashed."""


class TransferError(TrashError):
    """Raised when a cross-device copy cannot be completed or verified."""


class IncompleteMove(TransferError):
    """Raised when a verified copy exists but the source could not be deleted.

    Both the copy and (part of) the source are still on disk.
    """
