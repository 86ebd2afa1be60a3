"""Trash engine: put, list, restore, remove and empty.

All state lives on disk; every call re-reads what it needs. No locks are
taken on the trash or on the files being moved, so another process trashing
or emptying the same directories at the same time can race with us.
"""

from __future__ import annotations

import errno
import logging
import os
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from ..config import resolve_data_home
from ..fs.safety import is_dot_entry, is_system_path, is_within, validate_entry_id
from ..fs.transfer import COPY, move_path, remove_entry
from ..logging import log_event
from .directories import TrashDirectorySet
from .errors import (
    Ambiguous,
    Collision,
    DestinationMissing,
    EntryNotFound,
    IncompleteMove,
    MalformedEntry,
    OrphanedEntry,
    RefusedPath,
    TrashError,
)
from .models import (
    ClearReport,
    ListProblem,
    Orphan,
    PutOutcome,
    RemoveResult,
    TrashDirectory,
    TrashEntry,
    TrashListing,
)
from .naming import NameAllocator
from .trashinfo import EntryCodec

_LOGGER = logging.getLogger(__name__)

PathLike = str | bytes | os.PathLike


class TrashEngine:
    def __init__(
        self,
        trash_dirs: TrashDirectorySet,
        *,
        codec: EntryCodec | None = None,
        allocator: NameAllocator | None = None,
        refuse_system_paths: bool = True,
        verify_copies: bool = True,
        audit: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.trash_dirs = trash_dirs
        self.codec = codec or EntryCodec()
        self.allocator = allocator or NameAllocator()
        self.refuse_system_paths = refuse_system_paths
        self.verify_copies = verify_copies
        self.audit = audit
        self.clock = clock

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TrashEngine":
        trash_cfg = config.get("trash") or {}
        logging_cfg = config.get("logging") or {}
        trash_dirs = TrashDirectorySet(
            resolve_data_home(config),
            home_fallback=bool(trash_cfg.get("home_fallback", False)),
        )
        return cls(
            trash_dirs,
            allocator=NameAllocator(int(trash_cfg.get("max_name_attempts", 100))),
            refuse_system_paths=bool(trash_cfg.get("refuse_system_paths", True)),
            verify_copies=bool(trash_cfg.get("verify_copies", True)),
            audit=bool(logging_cfg.get("events", True)),
        )

    # put

    def put(self, path: PathLike) -> str:
        """Move ``path`` into the matching trash directory and return its id.

        The sidecar is written first; if moving the file then fails the
        sidecar is removed again, so a crash can at worst leave a sidecar
        without content (reported as an orphan), never content without a
        record of where it came from. A cross-device copy that is verified
        but whose source cannot be deleted keeps its sidecar and raises
        :class:`IncompleteMove` carrying the entry id.
        """
        raw = os.fsencode(path)
        if is_dot_entry(raw):
            raise RefusedPath(f"不能把 . 或 .. 移到回收桶：{os.fsdecode(raw)}", path=raw)
        original = self._original_location(raw)
        try:
            os.lstat(original)
        except FileNotFoundError:
            raise FileNotFoundError(errno.ENOENT, "找不到要刪除的路徑", os.fsdecode(raw)) from None
        if self.refuse_system_paths and is_system_path(original):
            raise RefusedPath(f"拒絕移動系統路徑：{os.fsdecode(original)}", path=original)
        self._refuse_trash_paths(original)

        trash_dir = self.trash_dirs.select_for(original)
        deleted_at = self.clock().replace(microsecond=0)
        entry_id = self.allocator.allocate(
            trash_dir,
            os.path.basename(original),
            claim=lambda candidate: self.codec.write(trash_dir, candidate, original, deleted_at),
        )
        try:
            strategy = move_path(
                original,
                trash_dir.files_path(entry_id),
                device=self.trash_dirs.device,
                verify=self.verify_copies,
            )
        except IncompleteMove as exc:
            # the trash holds a verified copy, so the entry keeps its sidecar
            _LOGGER.error("已移至回收桶但原始位置無法清除：%s（ID：%s）", os.fsdecode(original), entry_id)
            self._audit(
                {
                    "event": "trash_put",
                    "entry_id": entry_id,
                    "original_path": original,
                    "trash_dir": trash_dir.path,
                    "strategy": COPY,
                    "source_removed": False,
                }
            )
            raise IncompleteMove(
                f"已複製到回收桶（ID：{entry_id}），但無法刪除原始位置：{os.fsdecode(original)}：{exc.__cause__ or exc}",
                path=original,
                entry_id=entry_id,
            ) from exc
        except BaseException:
            _LOGGER.error("移動失敗，撤回 trashinfo：%s", os.fsdecode(original))
            self._discard_sidecar(trash_dir, entry_id)
            raise

        _LOGGER.info("已移至回收桶：%s -> %s（%s）", os.fsdecode(original), trash_dir.display_path, strategy)
        self._audit(
            {
                "event": "trash_put",
                "entry_id": entry_id,
                "original_path": original,
                "trash_dir": trash_dir.path,
                "strategy": strategy,
            }
        )
        return entry_id

    def put_many(self, paths: Iterable[PathLike]) -> list[PutOutcome]:
        """Trash each path in turn; a failure is recorded and the rest continue."""
        outcomes: list[PutOutcome] = []
        for path in paths:
            raw = os.fsencode(path)
            try:
                entry_id = self.put(raw)
            except (OSError, TrashError, ValueError) as exc:
                _LOGGER.error("無法移至回收桶 %s：%s", os.fsdecode(raw), exc)
                outcomes.append(PutOutcome(path=raw, error=exc))
                continue
            outcomes.append(PutOutcome(path=raw, entry_id=entry_id))
        return outcomes

    # list

    def list_trashes(self) -> list[TrashDirectory]:
        return self.trash_dirs.enumerate()

    def list(self) -> TrashListing:
        listing = TrashListing()
        for trash_dir in self.trash_dirs.enumerate():
            self._scan(trash_dir, listing)
        return listing

    def _scan(self, trash_dir: TrashDirectory, listing: TrashListing) -> None:
        try:
            ids = self.codec.entry_ids(trash_dir)
        except OSError as exc:
            _LOGGER.warning("無法讀取 %s：%s", os.fsdecode(trash_dir.info_dir), exc)
            listing.problems.append(ListProblem(trash_dir, trash_dir.info_dir, exc))
            return
        for entry_id in ids:
            if not os.path.lexists(trash_dir.files_path(entry_id)):
                _LOGGER.warning("孤立的 trashinfo（檔案不存在）：%s", os.fsdecode(trash_dir.info_path(entry_id)))
                listing.orphans.append(Orphan(entry_id, trash_dir, "files"))
                continue
            try:
                entry = self.codec.read(trash_dir, entry_id)
            except MalformedEntry as exc:
                _LOGGER.warning("略過無法解析的 trashinfo %s：%s", os.fsdecode(trash_dir.info_path(entry_id)), exc)
                listing.problems.append(ListProblem(trash_dir, trash_dir.info_path(entry_id), exc, entry_id))
                continue
            listing.entries.append(entry)

        known = set(ids)
        try:
            names = sorted(os.listdir(trash_dir.files_dir))
        except OSError as exc:
            _LOGGER.warning("無法讀取 %s：%s", os.fsdecode(trash_dir.files_dir), exc)
            listing.problems.append(ListProblem(trash_dir, trash_dir.files_dir, exc))
            return
        for name in names:
            entry_id = os.fsdecode(name)
            if entry_id not in known:
                _LOGGER.warning("孤立的檔案（缺少 trashinfo）：%s", os.fsdecode(trash_dir.files_path(entry_id)))
                listing.orphans.append(Orphan(entry_id, trash_dir, "info"))

    # restore / remove

    def restore(self, key: PathLike, *, trash_dir: PathLike | None = None, strict: bool = False) -> TrashEntry:
        """Move an entry back to its original path.

        Never creates missing parent directories and never overwrites.
        """
        located_dir, entry_id = self._locate(key, trash_dir=trash_dir, strict=strict)
        files_path = located_dir.files_path(entry_id)
        if not os.path.lexists(located_dir.info_path(entry_id)):
            raise OrphanedEntry(
                f"缺少 trashinfo，無法得知原始位置：{entry_id}",
                path=files_path,
                entry_id=entry_id,
            )
        entry = self.codec.read(located_dir, entry_id)
        if not os.path.lexists(files_path):
            raise OrphanedEntry(f"回收桶中的檔案已不存在：{entry_id}", path=files_path, entry_id=entry_id)

        destination = entry.original_path
        parent = os.path.dirname(destination)
        if not os.path.isdir(parent):
            raise DestinationMissing(
                f"原始資料夾已不存在：{os.fsdecode(parent)}",
                path=parent,
                entry_id=entry_id,
            )
        if os.path.lexists(destination):
            raise Collision(
                f"原始路徑已存在，無法還原：{entry.display_path}",
                path=destination,
                entry_id=entry_id,
            )

        try:
            strategy = move_path(files_path, destination, device=self.trash_dirs.device, verify=self.verify_copies)
        except IncompleteMove as exc:
            # what is left in files/ stays paired with its sidecar until removed
            _LOGGER.error("已還原 %s，但回收桶中的副本無法清除（ID：%s）", entry.display_path, entry_id)
            raise IncompleteMove(
                f"已還原到 {entry.display_path}，但回收桶中的副本無法完全刪除，請以 remove {entry_id} 清除：{exc.__cause__ or exc}",
                path=files_path,
                entry_id=entry_id,
            ) from exc
        try:
            self.codec.remove(located_dir, entry_id)
        except OSError as exc:
            _LOGGER.error("已還原檔案但無法刪除 trashinfo %s：%s", os.fsdecode(entry.info_path), exc)
            raise

        _LOGGER.info("已還原：%s（%s）", entry.display_path, strategy)
        self._audit(
            {
                "event": "trash_restore",
                "entry_id": entry_id,
                "restored_path": destination,
                "trash_dir": located_dir.path,
                "strategy": strategy,
            }
        )
        return entry

    def remove(self, key: PathLike, *, trash_dir: PathLike | None = None, strict: bool = False) -> RemoveResult:
        """Permanently delete an entry; orphans lose whichever half exists."""
        located_dir, entry_id = self._locate(key, trash_dir=trash_dir, strict=strict)
        return self._remove_halves(located_dir, entry_id)

    def _remove_halves(self, trash_dir: TrashDirectory, entry_id: str) -> RemoveResult:
        # content first, sidecar last: an interruption leaves a visible orphan
        files_path = trash_dir.files_path(entry_id)
        info_path = trash_dir.info_path(entry_id)
        removed_file = False
        removed_info = False
        if os.path.lexists(files_path):
            remove_entry(files_path)
            removed_file = True
        if os.path.lexists(info_path):
            os.unlink(info_path)
            removed_info = True
        if not (removed_file or removed_info):
            raise EntryNotFound(f"找不到回收桶項目：{entry_id}", path=trash_dir.path, entry_id=entry_id)

        result = RemoveResult(entry_id, trash_dir, removed_file, removed_info)
        if result.note:
            _LOGGER.info("%s：%s", result.note, entry_id)
        self._audit(
            {
                "event": "trash_remove",
                "entry_id": entry_id,
                "trash_dir": trash_dir.path,
                "removed_file": removed_file,
                "removed_info": removed_info,
            }
        )
        return result

    # empty

    def clear(self) -> ClearReport:
        return self.empty()

    def empty(self, before: datetime | None = None, dry_run: bool = False) -> ClearReport:
        """Remove every entry, or only those deleted before ``before``.

        Best effort: a failing entry is recorded and the rest continue.
        Orphans and unreadable sidecars have no usable date and are only
        removed when no cutoff is given.
        """
        listing = self.list()
        targets: list[tuple[TrashDirectory, str, str]] = [
            (entry.trash_dir, entry.entry_id, entry.display_path)
            for entry in listing.entries
            if before is None or entry.deleted_at < before
        ]
        report = ClearReport()
        if before is None:
            targets.extend(_orphan_targets(listing.orphans))
            for problem in listing.problems:
                if problem.entry_id is None:
                    report.failures.append((os.fsdecode(problem.path), problem.error))
                else:
                    targets.append((problem.trash_dir, problem.entry_id, f"（無法解析）{problem.entry_id}"))
        self._remove_targets(targets, report, dry_run)
        if not dry_run:
            self._audit(
                {
                    "event": "trash_empty",
                    "before": before,
                    "removed": len(report.removed),
                    "failed": len(report.failures),
                }
            )
        return report

    def purge_orphans(self, dry_run: bool = False) -> ClearReport:
        listing = self.list()
        report = ClearReport()
        self._remove_targets(_orphan_targets(listing.orphans), report, dry_run)
        if not dry_run:
            self._audit({"event": "trash_purge_orphans", "removed": len(report.removed)})
        return report

    def _remove_targets(
        self,
        targets: list[tuple[TrashDirectory, str, str]],
        report: ClearReport,
        dry_run: bool,
    ) -> None:
        for trash_dir, entry_id, label in targets:
            if dry_run:
                report.planned.append(label)
                continue
            try:
                report.removed.append(self._remove_halves(trash_dir, entry_id))
            except (OSError, TrashError) as exc:
                _LOGGER.warning("刪除 %s 失敗：%s", entry_id, exc)
                report.failures.append((entry_id, exc))

    # lookup

    def _locate(
        self,
        key: PathLike,
        *,
        trash_dir: PathLike | None = None,
        strict: bool = False,
    ) -> tuple[TrashDirectory, str]:
        """Resolve an entry id, or an absolute original path, to its directory.

        Trash directories are searched in priority order (home, then each
        mount's admin and user trash). The same id in several directories
        resolves to the first one unless ``strict`` is set.
        """
        if trash_dir is not None:
            search = [self.trash_dirs.find(os.fsencode(trash_dir))]
        else:
            search = self.trash_dirs.enumerate()
        raw_key = os.fsencode(key)
        if b"/" in raw_key:
            return self._locate_by_path(raw_key, search)

        entry_id = os.fsdecode(raw_key)
        validate_entry_id(entry_id)
        matches = [
            candidate
            for candidate in search
            if os.path.lexists(candidate.files_path(entry_id)) or os.path.lexists(candidate.info_path(entry_id))
        ]
        if not matches:
            raise EntryNotFound(f"找不到回收桶項目：{entry_id}", entry_id=entry_id)
        if len(matches) > 1:
            candidates = [match.display_path for match in matches]
            if strict:
                raise Ambiguous(
                    f"多個回收桶都有項目 {entry_id}：{', '.join(candidates)}",
                    candidates=candidates,
                    entry_id=entry_id,
                )
            _LOGGER.warning("多個回收桶都有項目 %s，使用 %s", entry_id, candidates[0])
        return matches[0], entry_id

    def _locate_by_path(self, original: bytes, search: list[TrashDirectory]) -> tuple[TrashDirectory, str]:
        wanted = self._original_location(original)
        listing = TrashListing()
        for trash_dir in search:
            self._scan(trash_dir, listing)
        matches = [entry for entry in listing.entries if entry.original_path == wanted]
        if not matches:
            raise EntryNotFound(f"回收桶中沒有來自此路徑的項目：{os.fsdecode(original)}", path=original)
        if len(matches) > 1:
            raise Ambiguous(
                f"有 {len(matches)} 個項目來自 {os.fsdecode(original)}，請改用 ID 指定",
                candidates=[entry.entry_id for entry in matches],
                path=original,
            )
        return matches[0].trash_dir, matches[0].entry_id

    # helpers

    @staticmethod
    def _original_location(raw: bytes) -> bytes:
        # resolve the parent only, so a symlink is trashed as a link
        absolute = os.path.abspath(raw)
        return os.path.join(os.path.realpath(os.path.dirname(absolute)), os.path.basename(absolute))

    def _refuse_trash_paths(self, original: bytes) -> None:
        known = [self.trash_dirs.home, *self.trash_dirs.enumerate()]
        for trash_dir in known:
            if is_within(original, trash_dir.path) or is_within(trash_dir.path, original):
                raise RefusedPath(
                    f"不能把回收桶本身或其內容移到回收桶：{os.fsdecode(original)}",
                    path=original,
                )

    def _discard_sidecar(self, trash_dir: TrashDirectory, entry_id: str) -> None:
        try:
            self.codec.remove(trash_dir, entry_id)
        except FileNotFoundError:
            return
        except OSError as exc:
            _LOGGER.error("無法撤回 trashinfo %s：%s", os.fsdecode(trash_dir.info_path(entry_id)), exc)

    def _audit(self, event: dict[str, Any]) -> None:
        if self.audit:
            log_event(event)


def _orphan_targets(orphans: list[Orphan]) -> list[tuple[TrashDirectory, str, str]]:
    return [(orphan.trash_dir, orphan.entry_id, f"（孤立項目）{orphan.entry_id}") for orphan in orphans]
