"""Data models for trash directories and entries."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime

INFO_SUFFIX = b".trashinfo"


@dataclass(frozen=True)
class TrashDirectory:
    """A ``{files/, info/}`` pair.

    ``topdir`` is the directory relative ``Path=`` values are resolved
    against: the mount root for top-level trashes, the data home for the
    home trash.
    """

    path: bytes
    topdir: bytes
    device: int
    is_home: bool = False
    is_admin: bool = False

    @property
    def files_dir(self) -> bytes:
        return os.path.join(self.path, b"files")

    @property
    def info_dir(self) -> bytes:
        return os.path.join(self.path, b"info")

    @property
    def kind(self) -> str:
        if self.is_home:
            return "home"
        return "admin" if self.is_admin else "user"

    @property
    def display_path(self) -> str:
        return os.fsdecode(self.path)

    def files_path(self, entry_id: str) -> bytes:
        return os.path.join(self.files_dir, os.fsencode(entry_id))

    def info_path(self, entry_id: str) -> bytes:
        return os.path.join(self.info_dir, os.fsencode(entry_id) + INFO_SUFFIX)

    def exists(self) -> bool:
        return os.path.isdir(self.files_dir) and os.path.isdir(self.info_dir)


@dataclass(frozen=True)
class TrashEntry:
    entry_id: str
    original_path: bytes
    deleted_at: datetime
    trash_dir: TrashDirectory

    @property
    def files_path(self) -> bytes:
        return self.trash_dir.files_path(self.entry_id)

    @property
    def info_path(self) -> bytes:
        return self.trash_dir.info_path(self.entry_id)

    @property
    def display_path(self) -> str:
        return os.fsdecode(self.original_path)


@dataclass(frozen=True)
class Orphan:
    """One half of an entry without the other.

    ``missing`` is ``"files"`` for a sidecar without content and ``"info"``
    for content without a sidecar.
    """

    entry_id: str
    trash_dir: TrashDirectory
    missing: str

    @property
    def present_path(self) -> bytes:
        if self.missing == "files":
            return self.trash_dir.info_path(self.entry_id)
        return self.trash_dir.files_path(self.entry_id)


@dataclass(frozen=True)
class ListProblem:
    trash_dir: TrashDirectory
    path: bytes
    error: Exception
    entry_id: str | None = None

    @property
    def message(self) -> str:
        return f"{os.fsdecode(self.path)}：{self.error}"


@dataclass
class TrashListing:
    entries: list[TrashEntry] = field(default_factory=list)
    orphans: list[Orphan] = field(default_factory=list)
    problems: list[ListProblem] = field(default_factory=list)


@dataclass(frozen=True)
class PutOutcome:
    path: bytes
    entry_id: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RemoveResult:
    entry_id: str
    trash_dir: TrashDirectory
    removed_file: bool
    removed_info: bool

    @property
    def note(self) -> str | None:
        if self.removed_file and self.removed_info:
            return None
        if self.removed_info:
            return "孤立項目：僅刪除 trashinfo（檔案已不存在）"
        return "孤立項目：僅刪除檔案（缺少 trashinfo）"


@dataclass
class ClearReport:
    removed: list[RemoveResult] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    failures: list[tuple[str, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
