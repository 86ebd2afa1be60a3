"""Mount table helpers."""

from __future__ import annotations

import logging
import os
import re
from typing import Callable

MOUNT_TABLES = (b"/proc/mounts", b"/etc/mtab")

_OCTAL_ESCAPE = re.compile(rb"\\([0-7]{3})")

_LOGGER = logging.getLogger(__name__)

DeviceOf = Callable[[bytes], int]


def device_of(path: bytes) -> int:
    """Device id of ``path`` itself (symlinks are not followed)."""
    return os.lstat(path).st_dev


def _unescape(field: bytes) -> bytes:
    # fstab escapes space, tab, newline and backslash as \ooo
    return _OCTAL_ESCAPE.sub(lambda match: bytes([int(match.group(1), 8)]), field)


def parse_mount_table(content: bytes) -> list[bytes]:
    mount_points: list[bytes] = []
    for line in content.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        mount_point = _unescape(fields[1])
        if mount_point not in mount_points:
            mount_points.append(mount_point)
    return mount_points


def list_mount_points() -> list[bytes]:
    for table in MOUNT_TABLES:
        try:
            with open(table, "rb") as handle:
                return parse_mount_table(handle.read())
        except OSError as exc:
            _LOGGER.debug("無法讀取掛載表 %s：%s", os.fsdecode(table), exc)
    _LOGGER.warning("找不到可用的掛載表，僅使用家目錄回收桶")
    return []


def find_mount_root(path: bytes, device: DeviceOf = device_of) -> bytes:
    """Walk up from ``path`` while the device id stays the same."""
    current = os.path.abspath(path)
    current_dev = device(current)
    while True:
        parent = os.path.dirname(current)
        if parent == current:
            return current
        if device(parent) != current_dev:
            return current
        current = parent


def nearest_existing(path: bytes) -> bytes:
    current = os.path.abspath(path)
    while not os.path.lexists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current
