"""Move files between locations, across filesystems when needed.

``move_path`` renames when source and destination share a device and falls
back to a single copy, verify and delete routine otherwise. Both trashing
and restoring go through it.
"""

from __future__ import annotations

import errno
import filecmp
import logging
import os
import shutil
import stat

from ..trash.errors import IncompleteMove, TransferError
from .mounts import DeviceOf, device_of, nearest_existing

_LOGGER = logging.getLogger(__name__)

RENAME = "rename"
COPY = "copy"


def can_rename(source: bytes, destination: bytes, device: DeviceOf = device_of) -> bool:
    """True when ``source`` can be renamed onto ``destination``'s filesystem."""
    try:
        source_dev = device(source)
        target_dev = device(nearest_existing(os.path.dirname(os.path.abspath(destination))))
    except OSError:
        return False
    return source_dev == target_dev


def move_path(
    source: bytes,
    destination: bytes,
    *,
    device: DeviceOf = device_of,
    verify: bool = True,
) -> str:
    """Move ``source`` to ``destination``; the destination must not exist.

    Returns ``"rename"`` or ``"copy"`` depending on the strategy used.
    """
    if os.path.lexists(destination):
        raise FileExistsError(errno.EEXIST, "目標已存在", os.fsdecode(destination))
    if can_rename(source, destination, device):
        try:
            os.rename(source, destination)
            return RENAME
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            _LOGGER.debug("rename 跨裝置失敗，改用複製：%s", os.fsdecode(source))
    copy_then_delete(source, destination, verify=verify)
    return COPY


def copy_then_delete(source: bytes, destination: bytes, *, verify: bool = True) -> None:
    """Copy, verify, then delete the source.

    On any failure before the source is touched the partial destination is
    removed and the source is left intact. Once the copy is verified the
    destination is kept: failing to delete the source then raises
    :class:`IncompleteMove`.
    """
    try:
        copy_entry(source, destination)
        if verify:
            verify_copy(source, destination)
    except OSError as exc:
        _discard(destination)
        raise TransferError(f"複製失敗：{exc}", path=source) from exc
    except BaseException:
        _discard(destination)
        raise
    try:
        remove_entry(source)
    except OSError as exc:
        _LOGGER.error("已複製到 %s，但無法刪除來源 %s：%s", os.fsdecode(destination), os.fsdecode(source), exc)
        raise IncompleteMove(f"已複製完成，但無法刪除來源：{exc}", path=source) from exc


def copy_entry(source: bytes, destination: bytes) -> None:
    mode = os.lstat(source).st_mode
    if stat.S_ISLNK(mode):
        os.symlink(os.readlink(source), destination)
    elif stat.S_ISDIR(mode):
        shutil.copytree(source, destination, symlinks=True, copy_function=_copy_file)
    elif stat.S_ISREG(mode):
        _copy_file(source, destination)
    else:
        raise TransferError(f"不支援跨裝置複製此類型的檔案：{os.fsdecode(source)}", path=source)


def _copy_file(source: bytes, destination: bytes) -> None:
    mode = os.lstat(source).st_mode
    if not (stat.S_ISREG(mode) or stat.S_ISLNK(mode)):
        raise TransferError(f"不支援跨裝置複製此類型的檔案：{os.fsdecode(source)}", path=source)
    shutil.copy2(source, destination, follow_symlinks=False)


def verify_copy(source: bytes, destination: bytes) -> None:
    """Compare type and content of every node under ``source`` and ``destination``."""
    mismatch = _first_mismatch(source, destination)
    if mismatch is not None:
        raise TransferError(f"複製內容驗證失敗：{os.fsdecode(mismatch)}", path=mismatch)


def _first_mismatch(source: bytes, destination: bytes) -> bytes | None:
    try:
        src_mode = os.lstat(source).st_mode
        dst_mode = os.lstat(destination).st_mode
    except OSError:
        return source
    if stat.S_IFMT(src_mode) != stat.S_IFMT(dst_mode):
        return source
    if stat.S_ISLNK(src_mode):
        return None if os.readlink(source) == os.readlink(destination) else source
    if stat.S_ISREG(src_mode):
        return None if filecmp.cmp(source, destination, shallow=False) else source
    if stat.S_ISDIR(src_mode):
        src_names = sorted(os.listdir(source))
        if src_names != sorted(os.listdir(destination)):
            return source
        for name in src_names:
            mismatch = _first_mismatch(os.path.join(source, name), os.path.join(destination, name))
            if mismatch is not None:
                return mismatch
    return None


def remove_entry(path: bytes) -> None:
    """Delete a file, symlink or whole directory tree."""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _discard(path: bytes) -> None:
    if not os.path.lexists(path):
        return
    try:
        remove_entry(path)
    except OSError as exc:
        _LOGGER.warning("無法清除未完成的複製結果 %s：%s", os.fsdecode(path), exc)
