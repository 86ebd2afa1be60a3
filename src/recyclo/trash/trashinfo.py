"""Reading and writing ``info/<id>.trashinfo`` sidecar files."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from email.utils import parsedate_to_datetime

from ..fs.atomic import exclusive_write_bytes
from .errors import MalformedEntry
from .models import INFO_SUFFIX, TrashDirectory, TrashEntry
from .pathcodec import decode_path, encode_path

HEADER = "[Trash Info]"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_LOGGER = logging.getLogger(__name__)


def format_trashinfo(stored_path: bytes, deleted_at: datetime) -> bytes:
    text = (
        f"{HEADER}\n"
        f"Path={encode_path(stored_path)}\n"
        f"DeletionDate={deleted_at.strftime(DATE_FORMAT)}\n"
    )
    return text.encode("ascii")


def parse_trashinfo(content: bytes) -> tuple[bytes, datetime]:
    """Return the raw ``Path`` value (possibly relative) and the deletion date.

    Only the header and the first ``Path=`` and ``DeletionDate=`` lines
    matter; every other line is ignored.
    """
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedEntry(f"trashinfo 不是有效的 UTF-8：{exc}") from exc
    lines = text.splitlines()
    if not lines or lines[0].strip() != HEADER:
        raise MalformedEntry("trashinfo 缺少 [Trash Info] 標頭")
    values: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition("=")
        if not sep:
            continue
        values.setdefault(key.strip(), value.strip())
    if "Path" not in values:
        raise MalformedEntry("trashinfo 缺少 Path")
    if not values["Path"]:
        raise MalformedEntry("trashinfo 的 Path 為空")
    if "DeletionDate" not in values:
        raise MalformedEntry("trashinfo 缺少 DeletionDate")
    return decode_path(values["Path"]), parse_deletion_date(values["DeletionDate"])


def parse_deletion_date(text: str) -> datetime:
    """Parse a DeletionDate into naive local time.

    Accepts the common ``YYYY-MM-DDTHH:MM:SS`` form, full ISO-8601 with an
    offset, the compact ``YYYYMMDDTHH:MM:SS`` form and RFC 2822.
    """
    try:
        return datetime.strptime(text, DATE_FORMAT)
    except ValueError:
        pass
    try:
        return _to_local_naive(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y%m%dT%H:%M:%S")
    except ValueError:
        pass
    try:
        return _to_local_naive(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass
    raise MalformedEntry(f"無法解析 DeletionDate：{text!r}")


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class EntryCodec:
    """Sidecar persistence for one trash directory at a time."""

    def stored_path(self, trash_dir: TrashDirectory, original_path: bytes) -> bytes:
        """Home trash keeps absolute paths; top-level trashes store them
        relative to the mount root when the file lives beneath it."""
        if trash_dir.is_home:
            return original_path
        topdir = trash_dir.topdir.rstrip(b"/") + b"/"
        if original_path.startswith(topdir):
            return original_path[len(topdir):]
        return original_path

    def write(self, trash_dir: TrashDirectory, entry_id: str, original_path: bytes, deleted_at: datetime) -> bool:
        """Create the sidecar; False if ``entry_id`` already has one."""
        content = format_trashinfo(self.stored_path(trash_dir, original_path), deleted_at)
        created = exclusive_write_bytes(trash_dir.info_path(entry_id), content)
        if created:
            _fsync_dir(trash_dir.info_dir)
        return created

    def read(self, trash_dir: TrashDirectory, entry_id: str) -> TrashEntry:
        info_path = trash_dir.info_path(entry_id)
        try:
            with open(info_path, "rb") as handle:
                content = handle.read()
        except OSError as exc:
            raise MalformedEntry(f"無法讀取 trashinfo：{exc}", path=info_path, entry_id=entry_id) from exc
        try:
            stored, deleted_at = parse_trashinfo(content)
        except MalformedEntry as exc:
            exc.path = info_path
            exc.entry_id = entry_id
            raise
        original = stored if os.path.isabs(stored) else os.path.join(trash_dir.topdir, stored)
        return TrashEntry(
            entry_id=entry_id,
            original_path=os.path.normpath(original),
            deleted_at=deleted_at,
            trash_dir=trash_dir,
        )

    def remove(self, trash_dir: TrashDirectory, entry_id: str) -> None:
        os.unlink(trash_dir.info_path(entry_id))

    def entry_ids(self, trash_dir: TrashDirectory) -> list[str]:
        """Ids of every ``*.trashinfo`` file in ``info/``, sorted."""
        ids = []
        for name in os.listdir(trash_dir.info_dir):
            if name.endswith(INFO_SUFFIX) and len(name) > len(INFO_SUFFIX):
                ids.append(os.fsdecode(name[: -len(INFO_SUFFIX)]))
            else:
                _LOGGER.debug("略過非 trashinfo 檔案：%s", os.fsdecode(name))
        return sorted(ids)


def _fsync_dir(path: bytes) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        # some filesystems (e.g. vfat, some FUSE mounts) refuse fsync on directories
        _LOGGER.debug("無法同步資料夾 %s：%s", os.fsdecode(path), exc)
    finally:
        os.close(fd)
