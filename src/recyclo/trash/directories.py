"""Discovery of the trash directories that apply to a file or to the system.

Layout follows the FreeDesktop.org trash specification:

* home trash: ``$XDG_DATA_HOME/Trash``
* admin top-level trash: ``$topdir/.Trash/$uid``, only if ``$topdir/.Trash``
  is a real directory (not a symlink) with the sticky bit set
* user top-level trash: ``$topdir/.Trash-$uid``

Directories are created lazily with mode 0700 the first time they are
written to.
"""

from __future__ import annotations

import logging
import os
import stat
from typing import Callable

from ..fs.mounts import DeviceOf, device_of, find_mount_root, list_mount_points, nearest_existing
from .errors import DirectoryUnavailable
from .models import TrashDirectory

_LOGGER = logging.getLogger(__name__)

DIR_MODE = 0o700


class TrashDirectorySet:
    """Enumerates and selects trash directories.

    ``mounts`` and ``device`` are injectable so that multi-device layouts can
    be exercised without real mounts.
    """

    def __init__(
        self,
        data_home: bytes,
        *,
        uid: int | None = None,
        mounts: Callable[[], list[bytes]] | None = None,
        device: DeviceOf = device_of,
        home_fallback: bool = False,
    ) -> None:
        self.data_home = os.path.abspath(data_home)
        self.uid = os.getuid() if uid is None else uid
        self._mounts = mounts or list_mount_points
        self.device = device
        self.home_fallback = home_fallback

    @property
    def home(self) -> TrashDirectory:
        path = os.path.join(self.data_home, b"Trash")
        try:
            device = self.device(nearest_existing(path))
        except OSError as exc:
            raise DirectoryUnavailable(f"無法取得家目錄回收桶的裝置資訊：{exc}", path=path) from exc
        return TrashDirectory(path=path, topdir=self.data_home, device=device, is_home=True)

    def admin_trash(self, topdir: bytes) -> TrashDirectory | None:
        """``$topdir/.Trash/$uid`` if the shared parent passes the checks."""
        shared = os.path.join(topdir, b".Trash")
        try:
            info = os.lstat(shared)
        except FileNotFoundError:
            return None
        except OSError as exc:
            _LOGGER.warning("無法檢查 %s：%s", os.fsdecode(shared), exc)
            return None
        if stat.S_ISLNK(info.st_mode):
            _LOGGER.warning("%s 是符號連結，視為不安全而略過", os.fsdecode(shared))
            return None
        if not stat.S_ISDIR(info.st_mode):
            _LOGGER.warning("%s 不是資料夾，略過", os.fsdecode(shared))
            return None
        if not info.st_mode & stat.S_ISVTX:
            _LOGGER.warning("%s 未設定 sticky bit，視為不安全而略過", os.fsdecode(shared))
            return None
        path = os.path.join(shared, str(self.uid).encode("ascii"))
        return TrashDirectory(path=path, topdir=topdir, device=self.device(shared), is_admin=True)

    def user_trash(self, topdir: bytes) -> TrashDirectory:
        path = os.path.join(topdir, b".Trash-" + str(self.uid).encode("ascii"))
        return TrashDirectory(path=path, topdir=topdir, device=self.device(topdir))

    def candidates_for(self, path: bytes) -> list[TrashDirectory]:
        """Trash directories to try for ``path``, in order.

        The home trash when it shares the device, otherwise the admin and
        then the user top-level trash of the file's own mount. With
        ``home_fallback`` the home trash is appended last.
        """
        parent = os.path.dirname(os.path.abspath(path)) or b"/"
        file_device = self.device(path)
        home = self.home
        if home.device == file_device:
            return [home]
        topdir = find_mount_root(parent, self.device)
        candidates: list[TrashDirectory] = []
        admin = self.admin_trash(topdir)
        if admin is not None:
            candidates.append(admin)
        candidates.append(self.user_trash(topdir))
        if self.home_fallback:
            candidates.append(home)
        return candidates

    def select_for(self, path: bytes) -> TrashDirectory:
        """First candidate for ``path`` that exists or can be created."""
        errors: list[str] = []
        for candidate in self.candidates_for(path):
            try:
                self.ensure(candidate)
            except DirectoryUnavailable as exc:
                _LOGGER.info("回收桶不可用，嘗試下一個：%s", exc)
                errors.append(str(exc))
                continue
            return candidate
        raise DirectoryUnavailable(
            f"找不到可用的回收桶：{os.fsdecode(path)}（{'；'.join(errors)}）",
            path=path,
        )

    def ensure(self, trash_dir: TrashDirectory) -> None:
        """Create ``files/`` and ``info/`` (and the trash root) if missing."""
        if not trash_dir.is_home and os.path.islink(trash_dir.path):
            raise DirectoryUnavailable(f"回收桶是符號連結，拒絕使用：{trash_dir.display_path}", path=trash_dir.path)
        try:
            if trash_dir.is_home:
                os.makedirs(trash_dir.path, mode=DIR_MODE, exist_ok=True)
            else:
                _mkdir_private(trash_dir.path)
            _mkdir_private(trash_dir.files_dir)
            _mkdir_private(trash_dir.info_dir)
        except OSError as exc:
            raise DirectoryUnavailable(f"無法建立回收桶 {trash_dir.display_path}：{exc}", path=trash_dir.path) from exc
        if not os.path.isdir(trash_dir.files_dir) or not os.path.isdir(trash_dir.info_dir):
            raise DirectoryUnavailable(f"回收桶結構不完整：{trash_dir.display_path}", path=trash_dir.path)

    def enumerate(self) -> list[TrashDirectory]:
        """All existing trash directories, home trash first.

        Mounts on the home device are skipped; for every other mount the
        admin form comes before the user form.
        """
        home = self.home
        found = [home] if home.exists() else []
        seen = {os.path.realpath(home.path)}
        for mount_point in self._mounts():
            try:
                if self.device(mount_point) == home.device:
                    continue
            except OSError:
                continue
            for trash_dir in (self.admin_trash(mount_point), self._existing_user_trash(mount_point)):
                if trash_dir is None or not trash_dir.exists():
                    continue
                real = os.path.realpath(trash_dir.path)
                if real in seen:
                    continue
                seen.add(real)
                found.append(trash_dir)
        return found

    def find(self, path: bytes) -> TrashDirectory:
        """The enumerated trash directory located at ``path``."""
        wanted = os.path.realpath(path)
        for trash_dir in self.enumerate():
            if os.path.realpath(trash_dir.path) == wanted:
                return trash_dir
        raise DirectoryUnavailable(f"不是已知的回收桶：{os.fsdecode(path)}", path=path)

    def _existing_user_trash(self, topdir: bytes) -> TrashDirectory | None:
        trash_dir = self.user_trash(topdir)
        if os.path.islink(trash_dir.path):
            _LOGGER.warning("%s 是符號連結，略過", trash_dir.display_path)
            return None
        return trash_dir


def _mkdir_private(path: bytes) -> None:
    try:
        os.mkdir(path, DIR_MODE)
    except FileExistsError:
        if not os.path.isdir(path) or os.path.islink(path):
            raise NotADirectoryError(f"不是資料夾：{os.fsdecode(path)}") from None
